# src/plancheck/checks/plan.py

"""
checks/plan.py
==============

Información general del plan (categoría Plan):

  - identificación del plan y prescripción, con checklist de Rx
  - detección de SiB (más de un PTV)
  - manejo respiratorio (ABC / BH / gating / 4DCT / FB)
  - posicionamiento no estándar
  - lateralidad en el nombre del plan y en estructuras
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from plancore.naming import (
    Laterality,
    detect_breathing_indicators,
    lateral_structure_ids,
    positioning_alerts,
    resolve_laterality,
)
from plancore.snapshot import Category, Finding, PlanSnapshot, Prescription, Severity
from plancheck.checks.technique import TechniqueResult
from plancheck.config import get_checklist

_BLANK = "____________________"


@dataclass(frozen=True)
class PlanInfoResult:
    plan_id: str
    plan_name: Optional[str]
    course_id: Optional[str]
    image_id: Optional[str]
    prescription: Prescription
    technique: str
    modalities: Tuple[str, ...]
    energies: Tuple[str, ...]
    ptv_ids: Tuple[str, ...]
    breathing_compensated: bool
    breathing_indicators: Tuple[str, ...]
    orientation: str
    positioning_alerts: Tuple[str, ...]
    plan_laterality: Optional[Laterality]
    lateral_structures: Tuple[str, ...]

    @property
    def sib_detected(self) -> bool:
        return len(self.ptv_ids) > 1


def analyze_plan_info(plan: PlanSnapshot, technique: Optional[TechniqueResult] = None) -> PlanInfoResult:
    """
    Sin resultado de técnica (p.ej. el clasificador falló) el resto de la
    información del plan se analiza igual; la técnica queda como "Unknown".
    """
    compensated, indicators = detect_breathing_indicators(
        plan.plan_id, plan.plan_name, plan.image.id if plan.image is not None else None
    )
    plan_lat = resolve_laterality(plan.plan_id) or resolve_laterality(plan.plan_name or "")
    return PlanInfoResult(
        plan_id=plan.plan_id,
        plan_name=plan.plan_name,
        course_id=plan.course_id,
        image_id=plan.image.id if plan.image is not None else None,
        prescription=plan.prescription,
        technique=technique.technique if technique is not None else "Unknown",
        modalities=technique.modalities if technique is not None else (),
        energies=technique.energies if technique is not None else (),
        ptv_ids=tuple(s.id for s in plan.ptvs),
        breathing_compensated=compensated,
        breathing_indicators=tuple(indicators),
        orientation=plan.treatment_orientation,
        positioning_alerts=tuple(positioning_alerts(plan.treatment_orientation)),
        plan_laterality=plan_lat,
        lateral_structures=tuple(lateral_structure_ids(s.id for s in plan.structures)),
    )


def _cgy(value: Optional[float]) -> str:
    return f"{value:.1f} cGy" if value is not None else _BLANK


def prescription_checklist(info: PlanInfoResult) -> List[str]:
    rx = info.prescription
    items = [
        f"Rx Site: {info.image_id or _BLANK}",
        f"Technique: {info.technique}",
        f"Modality: {'/'.join(info.modalities) or _BLANK}",
        f"Energy: {', '.join(info.energies) or _BLANK}",
        f"Rx Dose: {_cgy(rx.total_dose_cgy)}",
        f"Fractionation Dose: {_cgy(rx.dose_per_fraction_cgy)}",
        f"Number of Fractions: {rx.number_of_fractions if rx.number_of_fractions is not None else _BLANK}",
        "SiB Status: " + ("YES - Multiple PTV detected" if info.sib_detected else "NO - Single target"),
        "Pattern: Daily",
    ]
    return items + get_checklist("PRESCRIPTION")


def plan_info_findings(info: PlanInfoResult) -> List[Finding]:
    out: List[Finding] = []

    ident = f"Plan {info.plan_id}"
    if info.plan_name:
        ident += f" ({info.plan_name})"
    if info.course_id:
        ident += f", course {info.course_id}"
    out.append(Finding(Category.PLAN, Severity.INFO, "Plan identification", ident))

    # Prescripción
    rx = info.prescription
    rx_msg = (f"Prescription: {_cgy(rx.total_dose_cgy)} total, "
              f"{_cgy(rx.dose_per_fraction_cgy)} x "
              f"{rx.number_of_fractions if rx.number_of_fractions is not None else '?'} fractions")
    out.append(Finding(
        Category.PLAN,
        Severity.INFO if rx.is_complete else Severity.WARNING,
        "Prescription",
        rx_msg if rx.is_complete else rx_msg + " (incomplete prescription)",
        tuple(prescription_checklist(info)),
    ))

    # SiB
    if info.sib_detected:
        out.append(Finding(
            Category.PLAN, Severity.WARNING, "SiB detection",
            f"Multiple PTVs detected ({len(info.ptv_ids)}): possible simultaneous integrated boost",
            tuple(get_checklist("SIB_PLAN")),
            {"ptvs": list(info.ptv_ids)},
        ))
    else:
        out.append(Finding(Category.PLAN, Severity.INFO, "SiB detection",
                           f"Single target: {len(info.ptv_ids)} PTV"))

    # Respiración
    if info.breathing_compensated:
        out.append(Finding(
            Category.PLAN, Severity.INFO, "Breathing motion management",
            "Breathing motion management detected: " + "; ".join(info.breathing_indicators),
            tuple(get_checklist("BREATHING_COMPENSATED")),
        ))
    else:
        msg = "No breathing motion compensation detected"
        if info.breathing_indicators:
            msg += ": " + "; ".join(info.breathing_indicators)
        out.append(Finding(Category.PLAN, Severity.INFO, "Breathing motion management", msg,
                           tuple(get_checklist("BREATHING_FREE"))))

    # Posicionamiento
    if info.positioning_alerts:
        out.append(Finding(
            Category.PLAN, Severity.WARNING, "Patient positioning",
            f"Non-standard positioning ({info.orientation}): " + "; ".join(info.positioning_alerts),
            tuple(get_checklist("POSITIONING")),
        ))
    else:
        out.append(Finding(Category.PLAN, Severity.INFO, "Patient positioning",
                           f"Positioning: {info.orientation}"))

    # Lateralidad
    if info.plan_laterality is not None or info.lateral_structures:
        parts = []
        if info.plan_laterality is not None:
            parts.append(f"plan laterality {info.plan_laterality.value}")
        if info.lateral_structures:
            parts.append(f"lateral structures found: {len(info.lateral_structures)}")
        out.append(Finding(
            Category.PLAN, Severity.INFO, "Laterality",
            "Laterality indicators: " + ", ".join(parts),
            tuple(get_checklist("LATERALITY")),
            {"lateral_structures": list(info.lateral_structures)},
        ))
    return out
