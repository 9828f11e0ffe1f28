# src/plancheck/checks/coverage.py

"""
checks/coverage.py
==================

Checks relacionados con la dosis: cobertura de targets (Vx%), hotspots,
estrategia de optimización, resumen del dose grid y dosis en OARs.

Todas las consultas de dosis pasan por el protocolo DoseGrid del snapshot;
cualquier fallo de una estructura se captura aquí, se loguea y se
convierte en un resultado con ok=False. Las estructuras hermanas siguen.

Los umbrales vienen de plancheck.config:
  - COVERAGE_CONFIG
  - PRESCRIPTION_CONFIG
  - HOTSPOT_CONFIG
  - OPTIMIZATION_CONFIG
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from plancore.naming import DosePattern, StructureRole, is_key_oar, resolve_dose_cgy
from plancore.snapshot import (
    Category,
    DoseGrid,
    Finding,
    PlanSnapshot,
    Severity,
    Structure,
    Vector3,
)
from plancheck.config import (
    get_check_logger,
    get_checklist,
    get_coverage_config,
    get_hotspot_config,
    get_optimization_config,
    get_prescription_config,
)

logger = get_check_logger("plancheck.checks.coverage")


# =====================================================
# 1) Prescripción por target
# =====================================================

class PrescriptionSource(str, Enum):
    NAME = "name-derived"
    PLAN_FALLBACK = "plan-fallback"
    MEAN_ESTIMATE = "mean-estimate"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ResolvedPrescription:
    dose_cgy: Optional[float]
    source: PrescriptionSource
    dose_pattern: Optional[DosePattern] = None

    @property
    def low_confidence(self) -> bool:
        return self.source == PrescriptionSource.MEAN_ESTIMATE


def resolve_target_prescription(
    target: Structure,
    plan: PlanSnapshot,
    dose_grid: Optional[DoseGrid],
) -> ResolvedPrescription:
    """
    Una sola fuente por target, en este orden:
      1) patrón numérico en el ID del target
      2) dosis total del plan
      3) 1.05 × dosis media del target (baja confianza)
    """
    dose, pattern = resolve_dose_cgy(target.id)
    if dose is not None:
        return ResolvedPrescription(dose, PrescriptionSource.NAME, pattern)

    total = plan.total_dose_cgy
    if total is not None and total > 0:
        return ResolvedPrescription(float(total), PrescriptionSource.PLAN_FALLBACK)

    if dose_grid is not None:
        factor = float(get_prescription_config()["mean_dose_factor"])
        mean = dose_grid.mean_dose(target)
        if mean > 0:
            return ResolvedPrescription(mean * factor, PrescriptionSource.MEAN_ESTIMATE)

    return ResolvedPrescription(None, PrescriptionSource.UNRESOLVED)


# =====================================================
# 2) Cobertura (Vx%)
# =====================================================

EXCELLENT = "Excellent"
ACCEPTABLE = "Acceptable"
POOR = "Poor"


@dataclass(frozen=True)
class CoverageResult:
    structure_id: str
    role: StructureRole
    prescription: Optional[ResolvedPrescription] = None
    thresholds: Tuple[Tuple[float, float], ...] = ()   # (% Rx, % volumen)
    max_dose_cgy: Optional[float] = None
    mean_dose_cgy: Optional[float] = None
    tier: Optional[str] = None
    ok: bool = False
    failure_reason: Optional[str] = None
    skipped: bool = False

    @property
    def threshold_map(self) -> Dict[float, float]:
        return dict(self.thresholds)


def coverage_tier(volume_percent: float, cfg: Dict) -> str:
    if volume_percent >= float(cfg["excellent_min"]):
        return EXCELLENT
    if volume_percent >= float(cfg["acceptable_min"]):
        return ACCEPTABLE
    return POOR


def analyze_target(target: Structure, plan: PlanSnapshot, dose_grid: DoseGrid) -> CoverageResult:
    role = target.role
    if target.is_empty:
        return CoverageResult(
            structure_id=target.id,
            role=role,
            failure_reason="structure is empty",
            skipped=True,
        )

    cfg = get_coverage_config()
    levels = [float(x) for x in cfg["thresholds_by_role"].get(role.value, [])]

    try:
        rx = resolve_target_prescription(target, plan, dose_grid)
        if rx.dose_cgy is None:
            return CoverageResult(
                structure_id=target.id,
                role=role,
                prescription=rx,
                failure_reason="prescription dose could not be resolved",
            )

        thresholds = tuple(
            (level, float(dose_grid.volume_at_dose(target, rx.dose_cgy * level / 100.0, relative=True)))
            for level in levels
        )
        max_dose = float(dose_grid.dose_at_volume(target, 0.0))
        mean_dose = float(dose_grid.mean_dose(target))
    except Exception as exc:
        logger.warning("Coverage computation failed for %s: %s", target.id, exc)
        return CoverageResult(
            structure_id=target.id,
            role=role,
            failure_reason=str(exc) or type(exc).__name__,
        )

    tier = None
    if role == StructureRole.PTV:
        v_tier = dict(thresholds).get(float(cfg["tier_threshold"]))
        if v_tier is not None:
            tier = coverage_tier(v_tier, cfg)

    return CoverageResult(
        structure_id=target.id,
        role=role,
        prescription=rx,
        thresholds=thresholds,
        max_dose_cgy=max_dose,
        mean_dose_cgy=mean_dose,
        tier=tier,
        ok=True,
    )


def analyze_all_targets(plan: PlanSnapshot) -> Tuple[CoverageResult, ...]:
    """PTVs, CTVs, GTVs, ITVs en ese orden. Sin dose grid → tupla vacía."""
    if plan.dose_grid is None:
        return ()
    return tuple(analyze_target(t, plan, plan.dose_grid) for t in plan.targets)


def _fmt_thresholds(res: CoverageResult) -> str:
    return ", ".join(f"V{level:g}% = {vol:.1f}%" for level, vol in res.thresholds)


def coverage_findings(results: Tuple[CoverageResult, ...]) -> List[Finding]:
    out: List[Finding] = []
    for res in results:
        name = f"{res.role.value} coverage"
        if res.skipped:
            out.append(Finding(
                category=Category.DOSE,
                severity=Severity.INFO,
                name=name,
                message=f"{res.structure_id}: structure is empty, coverage skipped",
            ))
            continue

        if not res.ok:
            out.append(Finding(
                category=Category.DOSE,
                severity=Severity.WARNING,
                name=name,
                message=f"{res.structure_id}: unable to compute coverage ({res.failure_reason})",
            ))
            continue

        rx = res.prescription
        rx_text = f"Rx {rx.dose_cgy:.1f} cGy [{rx.source.value}]"
        if rx.low_confidence:
            rx_text += " (low confidence estimate)"
        message = (
            f"{res.structure_id}: {_fmt_thresholds(res)}; "
            f"max {res.max_dose_cgy:.1f} cGy, mean {res.mean_dose_cgy:.1f} cGy; {rx_text}"
        )
        details = {
            "prescription_cgy": rx.dose_cgy,
            "prescription_source": rx.source.value,
            "dose_pattern": rx.dose_pattern.value if rx.dose_pattern else None,
            "thresholds": {f"V{level:g}": vol for level, vol in res.thresholds},
            "tier": res.tier,
        }

        severity = Severity.INFO
        checklist: Tuple[str, ...] = ()
        if res.tier is not None:
            message += f" - coverage {res.tier}"
            if res.tier == ACCEPTABLE:
                severity = Severity.WARNING
            elif res.tier == POOR:
                severity = Severity.CRITICAL
                checklist = tuple(get_checklist("PTV_COVERAGE_POOR"))
        elif rx.low_confidence:
            severity = Severity.WARNING

        out.append(Finding(
            category=Category.DOSE,
            severity=severity,
            name=name,
            message=message,
            checklist_items=checklist,
            details=details,
        ))
    return out


# =====================================================
# 3) Hotspots
# =====================================================

HOT_IN_PTV = "PTV"
HOT_IN_OTHER = "OTHER"
HOT_IN_BODY = "BODY"


@dataclass(frozen=True)
class HotspotResult:
    ok: bool
    failure_reason: Optional[str] = None
    global_max_cgy: Optional[float] = None
    body_id: Optional[str] = None
    body_threshold_cgy: Optional[float] = None
    body_hot_volume_cc: Optional[float] = None
    hot_structure_id: Optional[str] = None
    hot_structure_kind: Optional[str] = None
    max_location_ids: Tuple[str, ...] = ()
    failures: Tuple[Tuple[str, str], ...] = ()


def analyze_hotspots(plan: PlanSnapshot) -> HotspotResult:
    """
    1) Volumen del BODY por encima de 107% de la dosis del plan.
    2) Estructura que contiene el Dmax global (volumen > 0.035 cc), con
       precedencia PTV → otras estructuras → BODY.
    3) Estructuras cuyo propio máximo coincide con el Dmax global (±10 cGy).
    """
    grid = plan.dose_grid
    if grid is None:
        return HotspotResult(ok=False, failure_reason="no dose distribution")

    cfg = get_hotspot_config()
    failures: List[Tuple[str, str]] = []
    gmax = float(grid.max_dose_cgy)

    def guarded(structure: Structure, fn, *args):
        try:
            return fn(structure, *args)
        except Exception as exc:
            logger.warning("Hotspot query failed for %s: %s", structure.id, exc)
            failures.append((structure.id, str(exc) or type(exc).__name__))
            return None

    candidates = [s for s in plan.structures if not s.is_empty]
    bodies = [s for s in candidates if s.role == StructureRole.EXTERNAL]
    body = bodies[0] if bodies else None

    # 1) BODY ≥ 107%
    body_threshold = None
    body_hot_cc = None
    total = plan.total_dose_cgy
    if body is not None and total is not None and total > 0:
        body_threshold = total * float(cfg["body_hotspot_factor"])
        body_hot_cc = guarded(body, grid.volume_at_dose, body_threshold, False)

    # 2) Dónde está el Dmax
    min_cc = float(cfg["max_dose_min_volume_cc"])
    ptvs = [s for s in candidates if s.role == StructureRole.PTV]
    others = [s for s in candidates if s.role not in (StructureRole.PTV, StructureRole.EXTERNAL)]
    search = [(HOT_IN_PTV, ptvs), (HOT_IN_OTHER, others), (HOT_IN_BODY, bodies)]

    hot_id = None
    hot_kind = None
    for kind, group in search:
        for s in group:
            vol = guarded(s, grid.volume_at_dose, gmax, False)
            if vol is not None and vol > min_cc:
                hot_id, hot_kind = s.id, kind
                break
        if hot_id is not None:
            break

    # 3) Estructuras con Dmax propio ≈ Dmax global
    tol = float(cfg["max_location_tolerance_cgy"])
    at_max: List[str] = []
    for s in candidates:
        smax = guarded(s, grid.dose_at_volume, 0.0)
        if smax is not None and abs(float(smax) - gmax) <= tol:
            at_max.append(s.id)

    return HotspotResult(
        ok=True,
        global_max_cgy=gmax,
        body_id=body.id if body is not None else None,
        body_threshold_cgy=body_threshold,
        body_hot_volume_cc=float(body_hot_cc) if body_hot_cc is not None else None,
        hot_structure_id=hot_id,
        hot_structure_kind=hot_kind,
        max_location_ids=tuple(at_max),
        failures=tuple(failures),
    )


def hotspot_findings(res: HotspotResult) -> List[Finding]:
    name = "Hotspots"
    if not res.ok:
        return [Finding(Category.DOSE, Severity.WARNING, name,
                        f"Hotspot analysis unavailable: {res.failure_reason}")]

    cfg = get_hotspot_config()
    limit_cc = float(cfg["body_hotspot_cc"])
    pct = float(cfg["body_hotspot_factor"]) * 100.0
    out: List[Finding] = []

    if res.body_hot_volume_cc is not None:
        msg = (f"{res.body_id}: {res.body_hot_volume_cc:.2f} cc at >= {pct:.0f}% "
               f"({res.body_threshold_cgy:.1f} cGy)")
        if res.body_hot_volume_cc > limit_cc:
            out.append(Finding(
                Category.DOSE, Severity.WARNING, name,
                msg + f", exceeds {limit_cc:g} cc",
                tuple(get_checklist("BODY_HOTSPOT")),
                {"body_hot_volume_cc": res.body_hot_volume_cc},
            ))
        else:
            out.append(Finding(Category.DOSE, Severity.INFO, name, msg,
                               details={"body_hot_volume_cc": res.body_hot_volume_cc}))
    elif res.body_id is None:
        out.append(Finding(Category.DOSE, Severity.WARNING, name,
                           "No BODY structure: body hotspot volume not evaluated"))
    elif res.body_threshold_cgy is None:
        out.append(Finding(Category.DOSE, Severity.WARNING, name,
                           f"Body hotspot ({pct:.0f}%) not evaluated: plan total dose unavailable"))

    gmax = f"{res.global_max_cgy:.1f} cGy"
    details = {"global_max_cgy": res.global_max_cgy, "max_location": list(res.max_location_ids)}
    if res.hot_structure_kind == HOT_IN_PTV:
        out.append(Finding(Category.DOSE, Severity.INFO, "Max dose location",
                           f"Global max dose {gmax} inside {res.hot_structure_id} (acceptable)",
                           tuple(get_checklist("HOTSPOT_IN_PTV")), details))
    elif res.hot_structure_kind == HOT_IN_OTHER:
        out.append(Finding(Category.DOSE, Severity.CRITICAL, "Max dose location",
                           f"Global max dose {gmax} inside non-target structure {res.hot_structure_id}",
                           tuple(get_checklist("HOTSPOT_OUTSIDE_PTV")), details))
    elif res.hot_structure_kind == HOT_IN_BODY:
        out.append(Finding(Category.DOSE, Severity.WARNING, "Max dose location",
                           f"Global max dose {gmax} in {res.hot_structure_id} outside any other structure",
                           tuple(get_checklist("HOTSPOT_IN_BODY")), details))
    else:
        out.append(Finding(Category.DOSE, Severity.INFO, "Max dose location",
                           f"Global max dose {gmax}; location not resolved to a structure", details=details))

    if res.max_location_ids:
        out.append(Finding(Category.DOSE, Severity.INFO, "Max dose location",
                           "Structure max equals global max: " + ", ".join(res.max_location_ids)))

    for sid, reason in res.failures:
        out.append(Finding(Category.DOSE, Severity.WARNING, name,
                           f"{sid}: unable to compute hotspot metrics ({reason})"))
    return out


# =====================================================
# 4) Optimización
# =====================================================

MULTI_TARGET = "multi-target"
SINGLE_TARGET_LOWER = "single-target-lower"
SIB_CONCERN = "sib-concern"
SINGLE_TARGET = "single-target"
NO_OBJECTIVES = "no-objectives"
NO_SETUP = "no-setup"


@dataclass(frozen=True)
class OptimizationResult:
    strategy: str
    ptv_count: int
    total: int = 0
    upper: int = 0
    medium: int = 0
    low: int = 0
    lower: int = 0
    objectives_by_structure: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()


def analyze_optimization(plan: PlanSnapshot) -> OptimizationResult:
    """
    Bandas de prioridad:
      upper  = prioridad 1
      medium = 2–100
      low    = > 100
      lower  = > 1 (medium + low)
    """
    ptv_count = len(plan.ptvs)
    objectives = plan.optimization_objectives
    if objectives is None:
        return OptimizationResult(strategy=NO_SETUP, ptv_count=ptv_count)
    if not objectives:
        return OptimizationResult(strategy=NO_OBJECTIVES, ptv_count=ptv_count)

    cfg = get_optimization_config()
    upper_p = float(cfg["upper_priority"])
    medium_max = float(cfg["medium_max_priority"])

    upper = sum(1 for o in objectives if o.priority == upper_p)
    lower = sum(1 for o in objectives if o.priority > upper_p)
    medium = sum(1 for o in objectives if upper_p < o.priority <= medium_max)
    low = sum(1 for o in objectives if o.priority > medium_max)

    if lower > 0:
        strategy = MULTI_TARGET if ptv_count > 1 else SINGLE_TARGET_LOWER
    elif ptv_count > 1:
        strategy = SIB_CONCERN
    else:
        strategy = SINGLE_TARGET

    grouped: Dict[str, List[str]] = {}
    for o in objectives:
        grouped.setdefault(o.structure_id, []).append(f"{o.kind} (Priority {o.priority:g})")
    max_listed = int(cfg["max_structures_listed"])
    by_structure = tuple((sid, tuple(items)) for sid, items in list(grouped.items())[:max_listed])

    return OptimizationResult(
        strategy=strategy,
        ptv_count=ptv_count,
        total=len(objectives),
        upper=upper,
        medium=medium,
        low=low,
        lower=lower,
        objectives_by_structure=by_structure,
    )


def optimization_findings(res: OptimizationResult) -> List[Finding]:
    name = "Optimization"
    multi = res.ptv_count > 1

    if res.strategy == NO_SETUP:
        msg = "No optimization setup available: plan may not be optimized (imported or manual plan)"
        if multi:
            msg += "; multi-PTV plan without optimization data, verify manually"
        return [Finding(Category.DOSE, Severity.WARNING, name, msg,
                        tuple(get_checklist("OPTIMIZATION_MANUAL")))]

    if res.strategy == NO_OBJECTIVES:
        if multi:
            return [Finding(Category.DOSE, Severity.CRITICAL, name,
                            "Multi-PTV plan without optimization objectives",
                            tuple(get_checklist("OPTIMIZATION_SIB_CONCERN")))]
        return [Finding(Category.DOSE, Severity.WARNING, name, "No optimization objectives found")]

    out = [Finding(
        Category.DOSE, Severity.INFO, name,
        f"Optimization objectives: {res.total} total "
        f"(upper {res.upper}, medium {res.medium}, low {res.low})",
        details={"by_structure": {sid: list(items) for sid, items in res.objectives_by_structure}},
    )]

    if res.strategy == MULTI_TARGET:
        out.append(Finding(Category.DOSE, Severity.INFO, name,
                           f"Multi-target optimization detected: {res.lower} lower priority objectives",
                           tuple(get_checklist("OPTIMIZATION_MULTI_TARGET"))))
    elif res.strategy == SINGLE_TARGET_LOWER:
        out.append(Finding(Category.DOSE, Severity.WARNING, name,
                           f"Lower priority objectives with single target ({res.lower}): "
                           "may indicate OAR sparing optimization",
                           tuple(get_checklist("OPTIMIZATION_SINGLE_TARGET"))))
    elif res.strategy == SIB_CONCERN:
        out.append(Finding(Category.DOSE, Severity.WARNING, name,
                           "Multiple PTVs detected but no lower priority objectives found",
                           tuple(get_checklist("OPTIMIZATION_SIB_CONCERN"))))
    else:
        out.append(Finding(Category.DOSE, Severity.INFO, name,
                           "Single target optimization: all objectives at same priority level"))
    return out


# =====================================================
# 5) Resumen del dose grid
# =====================================================

@dataclass(frozen=True)
class DoseSummaryResult:
    max_dose_cgy: float
    resolution_mm: Vector3
    size: Tuple[int, int, int]
    total_dose_cgy: Optional[float]
    photon_model: Optional[str]
    electron_model: Optional[str]


def analyze_dose_summary(plan: PlanSnapshot) -> Optional[DoseSummaryResult]:
    grid = plan.dose_grid
    if grid is None:
        return None
    return DoseSummaryResult(
        max_dose_cgy=float(grid.max_dose_cgy),
        resolution_mm=tuple(grid.resolution_mm),  # type: ignore[arg-type]
        size=tuple(grid.size),  # type: ignore[arg-type]
        total_dose_cgy=plan.total_dose_cgy,
        photon_model=plan.photon_model,
        electron_model=plan.electron_model,
    )


def dose_summary_findings(res: DoseSummaryResult) -> List[Finding]:
    rx, ry, rz = res.resolution_mm
    nx, ny, nz = res.size
    msg = (f"Dose grid {nx}x{ny}x{nz} voxels at {rx:.1f}x{ry:.1f}x{rz:.1f} mm; "
           f"max dose {res.max_dose_cgy:.1f} cGy")
    if res.total_dose_cgy:
        msg += f" ({100.0 * res.max_dose_cgy / res.total_dose_cgy:.1f}% of Rx)"
    out = [Finding(Category.DOSE, Severity.INFO, "Dose distribution", msg)]

    models = [f"photon: {res.photon_model}" if res.photon_model else None,
              f"electron: {res.electron_model}" if res.electron_model else None]
    models = [m for m in models if m]
    if models:
        out.append(Finding(Category.DOSE, Severity.INFO, "Calculation models",
                           "Calculation models - " + ", ".join(models)))
    else:
        out.append(Finding(Category.DOSE, Severity.WARNING, "Calculation models",
                           "Calculation model not reported"))
    return out


# =====================================================
# 6) OARs clave
# =====================================================

@dataclass(frozen=True)
class OarDoseResult:
    structure_id: str
    max_dose_cgy: Optional[float] = None
    mean_dose_cgy: Optional[float] = None
    ok: bool = False
    failure_reason: Optional[str] = None


def analyze_oars(plan: PlanSnapshot) -> Tuple[OarDoseResult, ...]:
    grid = plan.dose_grid
    if grid is None:
        return ()
    out: List[OarDoseResult] = []
    for s in plan.structures:
        if s.is_empty or s.is_target or s.role == StructureRole.EXTERNAL:
            continue
        if not is_key_oar(s.id):
            continue
        try:
            out.append(OarDoseResult(
                structure_id=s.id,
                max_dose_cgy=float(grid.dose_at_volume(s, 0.0)),
                mean_dose_cgy=float(grid.mean_dose(s)),
                ok=True,
            ))
        except Exception as exc:
            logger.warning("OAR dose query failed for %s: %s", s.id, exc)
            out.append(OarDoseResult(structure_id=s.id, failure_reason=str(exc) or type(exc).__name__))
    return tuple(out)


def oar_findings(results: Tuple[OarDoseResult, ...]) -> List[Finding]:
    out: List[Finding] = []
    for r in results:
        if r.ok:
            out.append(Finding(Category.DOSE, Severity.INFO, "OAR dose",
                               f"{r.structure_id}: max {r.max_dose_cgy:.1f} cGy, "
                               f"mean {r.mean_dose_cgy:.1f} cGy"))
        else:
            out.append(Finding(Category.DOSE, Severity.WARNING, "OAR dose",
                               f"{r.structure_id}: unable to compute dose statistics ({r.failure_reason})"))
    return out
