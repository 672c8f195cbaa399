"""Enumerations for the renewal notice pipeline."""

from enum import Enum


class InsuranceStatus(Enum):
    """Expiry status of a policy record.

    ``SENT`` is terminal and is only ever assigned once a notice has been
    dispatched (see status.mark_sent); the classifier never computes it.
    """

    CRITICAL = "critical"
    DUE_SOON = "due_soon"
    PENDING = "pending"
    EXPIRED = "expired"
    SENT = "sent"

    @classmethod
    def from_string(cls, value: str | None) -> "InsuranceStatus":
        """Convert string to InsuranceStatus.

        Parameters
        ----------
        value : str | None
            Status name ('critical', 'due_soon', 'pending', 'expired', 'sent').
            Case-insensitive; hyphens are accepted in place of underscores.

        Returns
        -------
        InsuranceStatus
            Corresponding status enum value.

        Raises
        ------
        ValueError
            If value is None or not a valid status name.
        """
        if value is None:
            raise ValueError("Status cannot be None")

        value_lower = value.strip().lower().replace("-", "_")
        for status in cls:
            if status.value == value_lower:
                return status

        raise ValueError(
            f"Unknown status: {value}. "
            f"Valid options: {', '.join(s.value for s in cls)}"
        )


class TemplateType(Enum):
    """Letter layout category derived from the insurance branch (ramo).

    Each template type corresponds to a renderer module in templates/
    (salud_template.py, general_template.py).

    Attributes
    ----------
    SALUD : str
        Health/life layout with insured member list.
    GENERAL : str
        Generic policy layout that always requires manual review.
    """

    SALUD = "salud"
    GENERAL = "general"

    @property
    def file_prefix(self) -> str:
        """Notice type token used in generated PDF file names."""
        return "SALUD" if self is TemplateType.SALUD else "VCMTO"


class SortDirection(Enum):
    """Sort direction for the record view."""

    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> "SortDirection":
        return SortDirection.DESC if self is SortDirection.ASC else SortDirection.ASC
