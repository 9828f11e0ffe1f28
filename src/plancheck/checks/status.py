# src/plancheck/checks/status.py

"""
checks/status.py
================

Estado del plan y checklist final de firma (categoría Status).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from plancore.naming import STANDARD_CT, StructureRole, classify_ct_scan_type
from plancore.snapshot import Category, Finding, PlanSnapshot, Severity
from plancheck.config import get_checklist

TREATMENT_APPROVED = "TREATMENTAPPROVED"
PLANNING_APPROVED = "PLANNINGAPPROVED"


@dataclass(frozen=True)
class StatusAnalysis:
    approval_status: Optional[str]
    has_dose: bool
    has_treatment_beams: bool
    has_structure_set: bool
    prescription_complete: bool
    normalization_value: float
    normalization_method: Optional[str]
    beams_with_drr: int
    total_beams: int
    ct_type: str
    has_bolus: bool
    has_couch: bool
    is_sib: bool


def analyze_status(plan: PlanSnapshot) -> StatusAnalysis:
    return StatusAnalysis(
        approval_status=plan.approval_status,
        has_dose=plan.dose_grid is not None,
        has_treatment_beams=bool(plan.treatment_beams),
        has_structure_set=plan.has_structure_set and bool(plan.structures),
        prescription_complete=plan.prescription.is_complete,
        normalization_value=float(plan.prescription.normalization_value or 0.0),
        normalization_method=plan.prescription.normalization_method,
        beams_with_drr=sum(1 for b in plan.beams if b.reference_image_id),
        total_beams=len(plan.beams),
        ct_type=classify_ct_scan_type(plan.image.id if plan.image is not None else None),
        has_bolus=any(b.boluses for b in plan.treatment_beams),
        has_couch=any(s.role == StructureRole.SUPPORT for s in plan.structures),
        is_sib=len(plan.ptvs) > 1,
    )


def _approval_key(status: Optional[str]) -> str:
    return "".join(ch for ch in (status or "").upper() if ch.isalnum())


def signoff_checklist(res: StatusAnalysis) -> List[str]:
    items = get_checklist("STATUS_COMMON")
    if res.has_bolus:
        items += get_checklist("STATUS_BOLUS")
    if res.has_couch:
        items += get_checklist("STATUS_COUCH")
    if res.is_sib:
        items += get_checklist("STATUS_SIB")
    if res.ct_type != STANDARD_CT:
        items += get_checklist("STATUS_MOTION", ct_type=res.ct_type)
    return items


def status_findings(res: StatusAnalysis) -> List[Finding]:
    out: List[Finding] = []

    # Aprobación
    key = _approval_key(res.approval_status)
    if key == TREATMENT_APPROVED:
        out.append(Finding(Category.STATUS, Severity.INFO, "Approval status",
                           f"Plan status: {res.approval_status}"))
    elif key == PLANNING_APPROVED:
        out.append(Finding(Category.STATUS, Severity.WARNING, "Approval status",
                           f"Plan status: {res.approval_status} (treatment approval pending)"))
    else:
        out.append(Finding(Category.STATUS, Severity.WARNING, "Approval status",
                           f"Plan status: {res.approval_status or 'unknown'} (not approved)"))

    # Preparación
    missing = []
    if not res.has_dose:
        missing.append("dose not calculated")
    if not res.has_treatment_beams:
        missing.append("no treatment beams")
    if not res.has_structure_set:
        missing.append("no structure set")
    if missing:
        out.append(Finding(Category.STATUS, Severity.CRITICAL, "Plan readiness",
                           "Plan not ready: " + ", ".join(missing)))
    elif not res.prescription_complete:
        out.append(Finding(Category.STATUS, Severity.WARNING, "Plan readiness",
                           "Prescription incomplete (dose per fraction or number of fractions missing)"))
    else:
        out.append(Finding(Category.STATUS, Severity.INFO, "Plan readiness",
                           "Dose, beams, structure set and prescription present"))

    # Normalización
    if res.normalization_value == 0.0:
        out.append(Finding(Category.STATUS, Severity.WARNING, "Normalization",
                           "Plan normalization not set"))
    else:
        method = f" ({res.normalization_method})" if res.normalization_method else ""
        out.append(Finding(Category.STATUS, Severity.INFO, "Normalization",
                           f"Plan normalization {res.normalization_value:.1f}%{method}"))

    # DRRs
    if res.total_beams and res.beams_with_drr == res.total_beams:
        out.append(Finding(Category.STATUS, Severity.INFO, "DRR completeness", "All beams have DRRs"))
    elif res.total_beams:
        out.append(Finding(Category.STATUS, Severity.WARNING, "DRR completeness",
                           f"{res.beams_with_drr}/{res.total_beams} beams have DRRs - complete in Mosaiq"))

    # CT
    msg = f"CT scan type: {res.ct_type}"
    if res.ct_type != STANDARD_CT:
        msg += " - add note to Rx & site setup"
    out.append(Finding(Category.STATUS, Severity.INFO, "CT scan type", msg))

    out.append(Finding(Category.STATUS, Severity.INFO, "Sign-off checklist",
                       "Common sign-off checklist items", tuple(signoff_checklist(res))))
    return out
