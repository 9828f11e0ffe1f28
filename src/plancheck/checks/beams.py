# src/plancheck/checks/beams.py

"""
checks/beams.py
===============

Checks de beams (categoría Beam): conteos, MU, unidades de tratamiento,
bolus, grupos de energía, patrón de gantry, límite de MU para 6X-FFF,
DRRs y beams de setup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from plancore.snapshot import Beam, Category, Finding, PlanSnapshot, Severity
from plancheck.config import get_beam_config, get_checklist

STATIC = "Static"
CW = "CW"
CCW = "CCW"


@dataclass(frozen=True)
class GantryPattern:
    beam_id: str
    start: Optional[float]
    end: Optional[float]
    pattern: Optional[str]   # None → sin control points

    def describe(self) -> str:
        if self.pattern is None:
            return f"{self.beam_id}: no control points"
        if self.pattern == STATIC:
            return f"{self.beam_id}: {self.start:.0f} deg (Static)"
        return f"{self.beam_id}: {self.start:.0f} -> {self.end:.0f} deg ({self.pattern})"


@dataclass(frozen=True)
class EnergyGroup:
    energy: str
    beam_count: int
    monitor_units: float


@dataclass(frozen=True)
class SetupBeamInfo:
    beam_id: str
    gantry_angle: Optional[float]
    collimator_angle: Optional[float]
    jaw_x_cm: Optional[float]
    jaw_y_cm: Optional[float]
    drr_id: Optional[str]


@dataclass(frozen=True)
class BeamAnalysis:
    treatment_count: int
    setup_count: int
    total_mu: float
    units: Tuple[Tuple[str, int], ...]
    bolus_beams: Tuple[Tuple[str, Tuple[str, ...]], ...]
    energy_groups: Tuple[EnergyGroup, ...]
    gantry: Tuple[GantryPattern, ...]
    fff_over_limit: Tuple[Tuple[str, float], ...]
    missing_drr: Tuple[str, ...]
    setup_beams: Tuple[SetupBeamInfo, ...]

    @property
    def bolus_ids(self) -> Tuple[str, ...]:
        seen: List[str] = []
        for _, ids in self.bolus_beams:
            for b in ids:
                if b not in seen:
                    seen.append(b)
        return tuple(seen)


def gantry_pattern(beam: Beam, static_tol_deg: float = 1.0) -> GantryPattern:
    """
    Estático si |fin − inicio| < tolerancia; si no, sentido de giro con
    wrap-around en ±180° (CW si la diferencia envuelta es positiva).
    """
    start, end = beam.gantry_start, beam.gantry_end
    if start is None or end is None:
        return GantryPattern(beam.id, start, end, None)
    if abs(start - end) < static_tol_deg:
        return GantryPattern(beam.id, start, end, STATIC)

    diff = end - start
    if diff > 180:
        diff -= 360
    elif diff < -180:
        diff += 360
    return GantryPattern(beam.id, start, end, CW if diff > 0 else CCW)


def _is_fff_limited(energy: str, cfg: Dict) -> bool:
    up = (energy or "").upper()
    target = str(cfg["fff_energy"]).upper()
    # "6X-FFF", "6X FFF", "6XFFF"
    prefix, _, suffix = target.partition("-")
    return prefix in up and suffix in up


def _setup_info(beam: Beam) -> SetupBeamInfo:
    cp = beam.control_points[0] if beam.control_points else None
    jaws = cp.jaw_positions if cp is not None else None
    return SetupBeamInfo(
        beam_id=beam.id,
        gantry_angle=cp.gantry_angle if cp is not None else None,
        collimator_angle=cp.collimator_angle if cp is not None else None,
        jaw_x_cm=jaws.x_size_cm if jaws is not None else None,
        jaw_y_cm=jaws.y_size_cm if jaws is not None else None,
        drr_id=beam.reference_image_id,
    )


def analyze_beams(plan: PlanSnapshot) -> BeamAnalysis:
    cfg = get_beam_config()
    treatment = plan.treatment_beams
    setup = plan.setup_beams

    units: Dict[str, int] = {}
    for b in treatment:
        units[b.treatment_unit] = units.get(b.treatment_unit, 0) + 1

    energy: Dict[str, List[Beam]] = {}
    for b in treatment:
        energy.setdefault(b.energy_mode, []).append(b)

    limit = float(cfg["fff_mu_limit"])
    tol = float(cfg["static_gantry_tolerance_deg"])

    return BeamAnalysis(
        treatment_count=len(treatment),
        setup_count=len(setup),
        total_mu=float(sum(b.monitor_units for b in treatment)),
        units=tuple(units.items()),
        bolus_beams=tuple((b.id, tuple(b.boluses)) for b in treatment if b.boluses),
        energy_groups=tuple(
            EnergyGroup(e, len(bs), float(sum(b.monitor_units for b in bs)))
            for e, bs in energy.items()
        ),
        gantry=tuple(gantry_pattern(b, tol) for b in treatment),
        fff_over_limit=tuple(
            (b.id, float(b.monitor_units)) for b in treatment
            if _is_fff_limited(b.energy_mode, cfg) and b.monitor_units > limit
        ),
        missing_drr=tuple(b.id for b in treatment if not b.reference_image_id),
        setup_beams=tuple(_setup_info(b) for b in setup),
    )


def beam_findings(res: BeamAnalysis) -> List[Finding]:
    out: List[Finding] = []

    if res.treatment_count == 0:
        out.append(Finding(Category.BEAM, Severity.CRITICAL, "Beams", "No treatment beams found"))
    else:
        out.append(Finding(
            Category.BEAM, Severity.INFO, "Beams",
            f"{res.treatment_count} treatment beam(s), {res.setup_count} setup beam(s), "
            f"total {res.total_mu:.1f} MU",
        ))

    # Unidades de tratamiento
    if res.units:
        desc = ", ".join(f"{u or '?'} ({n} beams)" for u, n in res.units)
        unit_items = [item for u, _ in res.units for item in (
            f"{u} selected in Mosaiq prescription",
            f"{u} available for treatment schedule",
            f"{u} QA current and complete",
        )] + get_checklist("TREATMENT_UNITS")
        if len(res.units) > 1:
            out.append(Finding(Category.BEAM, Severity.WARNING, "Treatment units",
                               f"Multiple treatment units: {desc}",
                               tuple(get_checklist("MULTIPLE_UNITS") + unit_items)))
        else:
            out.append(Finding(Category.BEAM, Severity.INFO, "Treatment units",
                               f"Treatment unit: {desc}", tuple(unit_items)))

    # Bolus
    if res.bolus_beams:
        out.append(Finding(
            Category.BEAM, Severity.WARNING, "Bolus",
            f"Bolus detected in {len(res.bolus_beams)} of {res.treatment_count} treatment beams: "
            + ", ".join(res.bolus_ids),
            tuple(get_checklist("BOLUS")),
            {"bolus_beams": {bid: list(ids) for bid, ids in res.bolus_beams}},
        ))
    elif res.treatment_count:
        out.append(Finding(Category.BEAM, Severity.INFO, "Bolus",
                           "No bolus detected in treatment beams",
                           tuple(get_checklist("NO_BOLUS"))))

    # Energías
    for g in res.energy_groups:
        out.append(Finding(Category.BEAM, Severity.INFO, "Energy",
                           f"{g.energy}: {g.beam_count} beams, {g.monitor_units:.1f} MU"))

    # Gantry
    if res.gantry:
        out.append(Finding(Category.BEAM, Severity.INFO, "Gantry angles",
                           "; ".join(p.describe() for p in res.gantry)))

    # MU 6X-FFF
    cfg = get_beam_config()
    for beam_id, mu in res.fff_over_limit:
        out.append(Finding(
            Category.BEAM, Severity.WARNING, "MU limit",
            f"{beam_id}: {mu:.1f} MU (>{float(cfg['fff_mu_limit']):g} MU limit for {cfg['fff_energy']})",
        ))

    # DRR
    if res.missing_drr:
        out.append(Finding(Category.BEAM, Severity.WARNING, "DRR",
                           "Treatment beams without DRR: " + ", ".join(res.missing_drr)))

    # Setup
    if res.setup_beams:
        for s in res.setup_beams:
            parts = [s.beam_id + ":"]
            if s.gantry_angle is not None:
                parts.append(f"gantry {s.gantry_angle:.1f} deg, collimator {s.collimator_angle:.1f} deg")
            if s.jaw_x_cm is not None:
                parts.append(f"jaws {s.jaw_x_cm:.1f} x {s.jaw_y_cm:.1f} cm")
            parts.append(f"DRR {s.drr_id}" if s.drr_id else "DRR not assigned")
            out.append(Finding(Category.BEAM,
                               Severity.INFO if s.drr_id else Severity.WARNING,
                               "Setup beam", " ".join(parts)))
        out.append(Finding(Category.BEAM, Severity.INFO, "Setup beams",
                           f"{len(res.setup_beams)} setup beam(s)",
                           tuple(get_checklist("SETUP_BEAMS"))))
    else:
        out.append(Finding(Category.BEAM, Severity.WARNING, "Setup beams", "No setup beams found"))
    return out
