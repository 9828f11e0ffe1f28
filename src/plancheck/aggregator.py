# src/plancheck/aggregator.py

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

from plancore.snapshot import CATEGORY_ORDER, Category, Finding, Report, Severity
from plancheck.checks import AnalysisBundle
from plancheck.checks.beams import beam_findings
from plancheck.checks.coverage import (
    coverage_findings,
    dose_summary_findings,
    hotspot_findings,
    oar_findings,
    optimization_findings,
)
from plancheck.checks.isocenter import isocenter_findings
from plancheck.checks.plan import plan_info_findings
from plancheck.checks.status import status_findings
from plancheck.checks.structures import structure_findings
from plancheck.checks.technique import technique_findings
from plancheck.config import get_check_logger

logger = get_check_logger("plancheck")

# (campo del bundle, categoría, mapper). El orden fija el orden de los
# findings dentro de cada categoría.
_MAPPERS: Tuple[Tuple[str, Category, Callable[..., List[Finding]]], ...] = (
    ("plan_info", Category.PLAN, plan_info_findings),
    ("technique", Category.PLAN, technique_findings),
    ("dose_summary", Category.DOSE, dose_summary_findings),
    ("coverage", Category.DOSE, coverage_findings),
    ("hotspots", Category.DOSE, hotspot_findings),
    ("optimization", Category.DOSE, optimization_findings),
    ("oars", Category.DOSE, oar_findings),
    ("beams", Category.BEAM, beam_findings),
    ("structures", Category.STRUCTURE, structure_findings),
    ("isocenter", Category.ISOCENTER, isocenter_findings),
    ("status", Category.STATUS, status_findings),
)

_ANALYZER_CATEGORY: Dict[str, Category] = {
    "technique": Category.PLAN,
    "plan": Category.PLAN,
    "coverage": Category.DOSE,
    "hotspots": Category.DOSE,
    "dose_summary": Category.DOSE,
    "oars": Category.DOSE,
    "optimization": Category.DOSE,
    "beams": Category.BEAM,
    "structures": Category.STRUCTURE,
    "isocenter": Category.ISOCENTER,
    "status": Category.STATUS,
}


def _unavailable(category: Category, message: str) -> Finding:
    return Finding(
        category=category,
        severity=Severity.WARNING,
        name="Data unavailable",
        message=message,
    )


def aggregate(bundle: AnalysisBundle) -> Report:
    """
    Convierte un AnalysisBundle en un Report:

      - cada resultado pasa por su mapper y sus findings se agregan, sin
        descartar ninguno, en el orden de _MAPPERS
      - cada fallo de analizador se vuelve un Warning en su categoría
      - una categoría sin ningún input recibe un finding "data unavailable",
        así el reporte siempre tiene las seis categorías
    """
    sections: Dict[Category, List[Finding]] = {cat: [] for cat in CATEGORY_ORDER}
    fed: Dict[Category, bool] = {cat: False for cat in CATEGORY_ORDER}

    for field_name, category, mapper in _MAPPERS:
        result = getattr(bundle, field_name)
        if result is None:
            continue
        fed[category] = True
        sections[category].extend(mapper(result))

    if bundle.dose_summary is None and not any(key == "dose_summary" for key, _ in bundle.failures):
        sections[Category.DOSE].insert(0, _unavailable(
            Category.DOSE,
            "Dose distribution unavailable: coverage, hotspot and OAR analysis skipped",
        ))

    for key, reason in bundle.failures:
        category = _ANALYZER_CATEGORY.get(key, Category.STATUS)
        fed[category] = True
        sections[category].append(_unavailable(
            category, f"{key} analysis could not be completed: {reason}",
        ))

    for category in CATEGORY_ORDER:
        if not fed[category] and not sections[category]:
            sections[category].append(_unavailable(
                category, f"No {category.value.lower()} data available",
            ))
        logger.info("%s: %d finding(s)", category.value, len(sections[category]))

    return Report(
        plan_id=bundle.plan_id,
        sections=tuple((cat, tuple(sections[cat])) for cat in CATEGORY_ORDER),
    )


def count_by_severity(report: Report, category: Optional[Category] = None) -> Dict[Severity, int]:
    """Conteo de findings por severidad (global o de una categoría)."""
    findings = report.findings(category) if category is not None else report.all_findings
    counts = {sev: 0 for sev in Severity}
    for f in findings:
        counts[f.severity] += 1
    return counts
