"""General renewal notice Typst template.

Renders the expiry notice for property, vehicle and liability policies.
Besides the policy table it prints the insured matter, the covered items
under a shared policy number and the specific conditions (deductibles,
territoriality) that the broker completes by hand. Outstanding manual data
is listed at the end of the letter.
"""

from __future__ import annotations

from typing import Mapping

TEMPLATE_PREFIX = """// --- GENERAL RENEWAL NOTICE --- //

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
#if letter.address != none [#letter.address \\ ]
Presente.

#v(0.4cm)

#align(center)[#text(weight: "bold")[#underline[AVISO DE VENCIMIENTO PÓLIZA DE SEGURO]]]

De nuestra consideración:

Por medio de la presente, nos permitimos recordarle que se aproxima el vencimiento de #if letter.plural [las Pólizas] else [la Póliza] de Seguro cuyos detalles se especifican a continuación:

#table(
  columns: (15%, 15%, 20%, 25%, 25%),
  stroke: 0.5pt,
  inset: 5pt,
  header_cell[FECHA DE VENCIMIENTO], header_cell[No. DE PÓLIZA], header_cell[COMPAÑÍA],
  header_cell[RAMO], header_cell[VALOR ASEGURADO],
  ..policies.map(p => (p.expiry_date, p.policy_number, p.company, p.branch, p.insured_value)).flatten(),
)

#for policy in policies [
  #if policy.items.len() > 0 [
    *Ítems asegurados, póliza #policy.policy_number:*
    #table(
      columns: (1fr, auto, auto),
      stroke: 0.5pt,
      inset: 5pt,
      header_cell[DESCRIPCIÓN], header_cell[VALOR ASEGURADO], header_cell[VALOR DECLARADO],
      ..policy.items.map(i => (i.description, i.insured_value, i.declared_value)).flatten(),
    )
  ]
]

#let with_matter = policies.filter(p => p.insured_matter != none)
#if with_matter.len() > 0 [
  *MATERIA ASEGURADA:*
  #list(..with_matter.map(p => p.insured_matter))
]

*CONDICIONES ESPECÍFICAS:*

#let with_deductibles = policies.filter(p => p.deductibles != none)
#if with_deductibles.len() > 0 {
  list(..with_deductibles.map(p => [Deducible coaseguro: #p.deductibles]))
} else {
  warning_box[COMPLETAR: Información sobre deducibles y coaseguro]
}

#let with_territoriality = policies.filter(p => p.territoriality != none)
#if with_territoriality.len() > 0 {
  list(..with_territoriality.map(p => [Extraterritorialidad: #p.territoriality]))
} else {
  warning_box[COMPLETAR: Información sobre extraterritorialidad (si aplica)]
}

#let with_coinsurance = policies.filter(p => p.coinsurance != none)
#if with_coinsurance.len() > 0 {
  list(..with_coinsurance.map(p => [Coaseguro: #p.coinsurance]))
}

#let with_conditions = policies.filter(p => p.specific_conditions != none)
#if with_conditions.len() > 0 [
  *CONDICIONES ESPECÍFICAS ADICIONALES:*
  #list(..with_conditions.map(p => [Póliza #p.policy_number: #p.specific_conditions]))
]

#if letter.additional_conditions != none [
  #letter.additional_conditions
]

Requerimos revisar los datos y el valor asegurado, esto para proceder si corresponde, con la actualización o modificación de esto(s). Tenga a bien hacernos a conocer cualquier cambio que se haya producido o en su defecto su consentimiento para la renovación.

Es importante informarle que, en caso de tener primas pendientes no se podrá renovar hasta su regularización de estas, la NO RENOVACIÓN, suspende toda cobertura de la póliza de seguro.

De esta manera quedamos a la espera de su respuesta y nos despedimos con la cordialidad de siempre.

#if letter.missing_data.len() > 0 [
  #warning_box[
    DATOS FALTANTES PARA COMPLETAR MANUALMENTE:
    #list(..letter.missing_data)
  ]
]

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
    """Render the Typst document for a single general notice.

    Raises
    ------
    KeyError
        If ``letter`` or ``policies`` is missing from the context.
    """
    required_keys = ("letter", "policies")
    missing = [key for key in required_keys if key not in context]
    if missing:
        raise KeyError(f"Missing context keys: {', '.join(missing)}")

    dynamic = DYNAMIC_BLOCK.replace("__LETTER__", context["letter"]).replace(
        "__POLICIES__", context["policies"]
    )
    return TEMPLATE_PREFIX + dynamic
