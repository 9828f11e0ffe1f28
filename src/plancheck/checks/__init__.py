# src/plancheck/checks/__init__.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from plancore.snapshot import PlanSnapshot
from plancheck.config import get_check_logger

from .beams import BeamAnalysis, analyze_beams
from .coverage import (
    CoverageResult,
    DoseSummaryResult,
    HotspotResult,
    OarDoseResult,
    OptimizationResult,
    analyze_all_targets,
    analyze_dose_summary,
    analyze_hotspots,
    analyze_optimization,
    analyze_oars,
)
from .isocenter import IsocenterAnalysis, analyze_isocenter
from .plan import PlanInfoResult, analyze_plan_info
from .status import StatusAnalysis, analyze_status
from .structures import StructureAnalysis, analyze_structures
from .technique import TechniqueResult, classify_technique

logger = get_check_logger("plancheck.checks")


@dataclass(frozen=True)
class AnalysisBundle:
    """
    Resultados crudos de todos los analizadores para UN plan.

    None en un campo = el analizador no corrió (falta su input) o falló;
    en el segundo caso el motivo queda en `failures` como (analizador, error).
    """
    plan_id: str
    technique: Optional[TechniqueResult] = None
    plan_info: Optional[PlanInfoResult] = None
    coverage: Optional[Tuple[CoverageResult, ...]] = None
    hotspots: Optional[HotspotResult] = None
    optimization: Optional[OptimizationResult] = None
    dose_summary: Optional[DoseSummaryResult] = None
    oars: Optional[Tuple[OarDoseResult, ...]] = None
    beams: Optional[BeamAnalysis] = None
    structures: Optional[StructureAnalysis] = None
    isocenter: Optional[IsocenterAnalysis] = None
    status: Optional[StatusAnalysis] = None
    failures: Tuple[Tuple[str, str], ...] = ()


def run_all_checks(plan: PlanSnapshot) -> AnalysisBundle:
    failures: List[Tuple[str, str]] = []

    def run(key: str, fn: Callable[..., Any], *args: Any) -> Any:
        logger.info("-> %s analysis...", key)
        try:
            return fn(*args)
        except Exception as exc:
            logger.warning("%s analysis failed: %s", key, exc)
            failures.append((key, str(exc) or type(exc).__name__))
            return None

    technique = run("technique", classify_technique, plan.beams, plan.plan_identifiers)
    plan_info = run("plan", analyze_plan_info, plan, technique)

    has_dose = plan.dose_grid is not None
    coverage = run("coverage", analyze_all_targets, plan) if has_dose else None
    hotspots = run("hotspots", analyze_hotspots, plan) if has_dose else None
    dose_summary = run("dose_summary", analyze_dose_summary, plan) if has_dose else None
    oars = run("oars", analyze_oars, plan) if has_dose else None
    optimization = run("optimization", analyze_optimization, plan)

    beams = run("beams", analyze_beams, plan)
    structures = run("structures", analyze_structures, plan)
    isocenter = run("isocenter", analyze_isocenter, plan)
    status = run("status", analyze_status, plan)

    return AnalysisBundle(
        plan_id=plan.plan_id,
        technique=technique,
        plan_info=plan_info,
        coverage=coverage,
        hotspots=hotspots,
        optimization=optimization,
        dose_summary=dose_summary,
        oars=oars,
        beams=beams,
        structures=structures,
        isocenter=isocenter,
        status=status,
        failures=tuple(failures),
    )


"""
checks/__init__.py
==================

Orquestador de analizadores. No contiene lógica clínica: llama en orden
a los submódulos y empaqueta sus resultados crudos en un AnalysisBundle.

    - technique   → clasificación de técnica (VMAT / IMRT / 3D-CRT / ...)
    - plan        → identificación, prescripción, SiB, respiración, posición
    - coverage    → cobertura Vx%, hotspots, optimización, resumen, OARs
    - beams       → MU, unidades, bolus, energías, gantry, DRR, setup
    - structures  → structure set, CT, overrides, PTV length
    - isocenter   → shifts, contención, user origin, mesa
    - status      → aprobación, preparación, checklist de firma

Los analizadores de dosis solo corren si el snapshot trae dose grid. La
conversión a findings vive en plancheck.aggregator, que usa los mappers
`*_findings` de cada submódulo.

Cómo extender
-------------

1) Nuevo check dentro de un submódulo: añadirlo a su `analyze_*` y a su
   mapper `*_findings`. Este archivo no cambia.
2) Nuevo submódulo: crear `analyze_*` + `*_findings`, añadir un campo al
   AnalysisBundle, llamarlo aquí y registrarlo en plancheck.aggregator.
"""
