"""Health renewal notice Typst template.

Renders the expiry notice sent for health, life and medical policies. The
letter lists each policy with its annual renewal premium and the insured
members covered under it.

Available placeholder variables:
- letter: letter-level data (date line, reference, client, review state)
- policies: one entry per policy with members and manual fields
"""

from __future__ import annotations

from typing import Mapping

TEMPLATE_PREFIX = """// --- HEALTH RENEWAL NOTICE --- //

#set page("us-letter", margin: (top: 2.5cm, bottom: 2.5cm, left: 2.5cm, right: 2cm))
#set text(size: 10pt, lang: "es")
#set par(justify: true)

#let warning_box(body) = block(
  width: 100%,
  inset: 6pt,
  radius: 3pt,
  fill: rgb("#fff3cd"),
  stroke: 0.5pt + rgb("#ffc107"),
)[#text(fill: rgb("#856404"), weight: "bold", size: 9pt)[#body]]

#let header_cell(body) = text(weight: "bold", size: 9pt)[#body]
"""

DYNAMIC_BLOCK = """
#let letter = __LETTER__
#let policies = __POLICIES__

#letter.city_date \\
#letter.reference_number

#v(0.4cm)

*#letter.client_name* \\
#if letter.phone != none [Telf: #letter.phone \\ ]
#if letter.email != none [Correo: #letter.email \\ ]
Presente.

#v(0.4cm)

#align(center)[#text(weight: "bold")[#underline[AVISO DE VENCIMIENTO PÓLIZA DE SEGURO SALUD]]]

De nuestra consideración:

Por medio de la presente, nos permitimos recordarle que se aproxima el vencimiento de #if letter.plural [las Pólizas] else [la Póliza] de Seguro cuyos detalles se especifican a continuación:

#for policy in policies [
  #table(
    columns: (1fr, 1fr, 1fr, 1fr),
    stroke: 0.5pt,
    inset: 5pt,
    header_cell[FECHA DE VENCIMIENTO], header_cell[No. DE PÓLIZA], header_cell[COMPAÑÍA], header_cell[RAMO],
    [#policy.expiry_date], [#policy.policy_number], [#policy.company],
    [#policy.branch #if policy.covid_note != none [#linebreak() #text(size: 8pt)[#policy.covid_note]]],
  )
  #if policy.renewal_premium != none [
    *PRIMA DE RENOVACIÓN ANUAL: #policy.renewal_premium*
  ] else [
    #warning_box[FALTA: Prima de renovación anual (completar manualmente)]
  ]
  #v(0.3cm)
]

#for policy in policies [
  #if policy.members.len() > 0 [
    *Asegurados.* #if policies.len() > 1 [Póliza #policy.policy_number]
    #list(..policy.members)
  ]
]

Tenga a bien hacernos conocer cualquier cambio que desea realizar o en su defecto su consentimiento para la renovación.

Nos permitimos recordarle que los seguros de Salud o Enfermedad se pagan por adelantado, al inicio de la vigencia, sea mensual o anual. En caso de tener primas pendientes no se podrá renovar.

Es importante informarle que la NO RENOVACIÓN, suspende toda cobertura de la póliza de seguro.

#if letter.additional_conditions != none [
  #letter.additional_conditions
]

De esta manera quedamos a la espera de su respuesta y nos despedimos con la cordialidad de siempre.

#if letter.needs_review [
  #warning_box[#align(center)[CARTA REQUIERE REVISIÓN MANUAL - DATOS INCOMPLETOS]]
]

#v(0.6cm)
Atentamente,

#v(1.2cm)
*#letter.company_name* \\
#letter.company_subtitle

#v(0.4cm)
#text(size: 8pt)[CC.: File \\ Adj.: Lo citado]
"""


def render_notice(context: Mapping[str, str]) -> str:
    """Render the Typst document for a single health notice.

    Parameters
    ----------
    context : Mapping[str, str]
        Typst literals built by generate_notices.build_template_context().
        Must include ``letter`` and ``policies``.

    Returns
    -------
    str
        Complete Typst source.

    Raises
    ------
    KeyError
        If any required context keys are missing.
    """
    required_keys = ("letter", "policies")
    missing = [key for key in required_keys if key not in context]
    if missing:
        raise KeyError(f"Missing context keys: {', '.join(missing)}")

    dynamic = DYNAMIC_BLOCK.replace("__LETTER__", context["letter"]).replace(
        "__POLICIES__", context["policies"]
    )
    return TEMPLATE_PREFIX + dynamic
