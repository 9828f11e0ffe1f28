# src/plancheck/checks/isocenter.py

"""
checks/isocenter.py
===================

Verificación geométrica del isocentro:

  - agrupación de isocentros (cm, 1 decimal, orden de aparición)
  - shift isocentro − user origin con interpretación direccional
  - shifts grandes (> 20 cm) por eje
  - contención en BODY / targets vía el predicado de cada estructura
  - user origin dentro del BODY
  - marcadores de setup (BB)
  - requerimientos de mesa por máquina (exento en cabeza/cerebro)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from plancore.geometry import axes_exceeding, round_vector, rounded_cm, shift_cm
from plancore.naming import (
    StructureRole,
    is_setup_marker,
    mentions_site,
    normalize_orientation,
)
from plancore.snapshot import (
    Beam,
    Category,
    Finding,
    PlanSnapshot,
    Severity,
    Structure,
    Vector3,
)
from plancheck.config import (
    get_check_logger,
    get_checklist,
    get_couch_requirements,
    get_isocenter_config,
)

logger = get_check_logger("plancheck.checks.isocenter")

# Convención head-first supine: (positivo, negativo) por eje
_HFS_DIRECTIONS: Tuple[Tuple[str, str], ...] = (
    ("Right", "Left"),
    ("Anterior", "Posterior"),
    ("Superior", "Inferior"),
)
_AXES = ("X", "Y", "Z")


# =====================================================
# Tipos
# =====================================================

@dataclass(frozen=True)
class Containment:
    in_body: bool
    body_checked: Tuple[str, ...]
    targets_containing: Tuple[str, ...]
    targets_checked: Tuple[str, ...]
    failures: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class GeometryResult:
    isocenter_mm: Vector3
    shift_cm: Optional[Vector3]
    directions: Optional[Tuple[str, ...]]   # None → orientación no estándar
    large_shift_axes: Tuple[str, ...]
    standard_orientation: bool
    containment: Containment


@dataclass(frozen=True)
class IsocenterGroup:
    position_cm: Vector3
    position_mm: Vector3
    beam_ids: Tuple[str, ...]


@dataclass(frozen=True)
class IsocenterAnalysis:
    groups: Tuple[IsocenterGroup, ...]
    geometries: Tuple[GeometryResult, ...]
    user_origin_mm: Optional[Vector3]
    origin_in_body: Optional[bool]
    setup_markers: Tuple[str, ...]
    orientation: str
    head_site: bool
    couch_requirements: Tuple[Tuple[str, Optional[str]], ...]


# =====================================================
# Helpers
# =====================================================

def is_standard_orientation(orientation: str) -> bool:
    aliases = get_isocenter_config()["standard_orientations"]
    return normalize_orientation(orientation) in {normalize_orientation(a) for a in aliases}


def describe_shift(shift: Vector3, decimals: Optional[int] = None) -> Tuple[str, ...]:
    """
    Palabras direccionales (head-first supine). Un eje con shift 0.0
    (tras redondear a `round_decimals`) no lleva palabra.
    """
    if decimals is None:
        decimals = int(get_isocenter_config()["round_decimals"])
    words: List[str] = []
    for v, (pos, neg) in zip(round_vector(shift, decimals), _HFS_DIRECTIONS):
        if v == 0.0:
            continue
        words.append(f"{abs(v):.1f} cm {pos if v > 0 else neg}")
    return tuple(words)


def _contains(structure: Structure, point: Vector3,
              failures: List[Tuple[str, str]]) -> bool:
    try:
        return structure.is_point_inside(point)
    except Exception as exc:
        logger.warning("Point containment failed for %s: %s", structure.id, exc)
        failures.append((structure.id, str(exc) or type(exc).__name__))
        return False


def check_containment(point_mm: Vector3, structures: Sequence[Structure]) -> Containment:
    failures: List[Tuple[str, str]] = []
    bodies = [s for s in structures if s.role == StructureRole.EXTERNAL and not s.is_empty]
    targets = [s for s in structures if s.is_target and not s.is_empty]

    in_body = False
    for b in bodies:
        if _contains(b, point_mm, failures):
            in_body = True

    containing = tuple(t.id for t in targets if _contains(t, point_mm, failures))
    return Containment(
        in_body=in_body,
        body_checked=tuple(b.id for b in bodies),
        targets_containing=containing,
        targets_checked=tuple(t.id for t in targets),
        failures=tuple(failures),
    )


# =====================================================
# API principal
# =====================================================

def verify_isocenter(
    isocenter_mm: Vector3,
    user_origin_mm: Optional[Vector3],
    orientation: str,
    structures: Sequence[Structure],
) -> GeometryResult:
    cfg = get_isocenter_config()
    decimals = int(cfg["round_decimals"])
    standard = is_standard_orientation(orientation)

    # El shift se guarda ya redondeado: el límite y el mensaje ven el mismo valor
    shift = None
    if user_origin_mm is not None:
        shift = round_vector(shift_cm(isocenter_mm, user_origin_mm), decimals)
    directions = None
    large: Tuple[str, ...] = ()
    if shift is not None:
        if standard:
            directions = describe_shift(shift, decimals)
        large = axes_exceeding(shift, float(cfg["large_shift_cm"]), _AXES)

    return GeometryResult(
        isocenter_mm=tuple(isocenter_mm),  # type: ignore[arg-type]
        shift_cm=shift,
        directions=directions,
        large_shift_axes=large,
        standard_orientation=standard,
        containment=check_containment(isocenter_mm, structures),
    )


def group_isocenters(beams: Sequence[Beam]) -> Tuple[IsocenterGroup, ...]:
    """
    Agrupa beams de tratamiento por isocentro (cm redondeados a 1 decimal).
    Los grupos respetan el orden de aparición.
    """
    decimals = int(get_isocenter_config()["round_decimals"])
    order: List[Vector3] = []
    first_mm: Dict[Vector3, Vector3] = {}
    members: Dict[Vector3, List[str]] = {}

    for b in beams:
        if b.is_setup_field:
            continue
        key = rounded_cm(b.isocenter_mm, decimals)
        if key not in members:
            order.append(key)
            first_mm[key] = tuple(b.isocenter_mm)  # type: ignore[assignment]
            members[key] = []
        members[key].append(b.id)

    return tuple(IsocenterGroup(k, first_mm[k], tuple(members[k])) for k in order)


def couch_requirement(machine_id: str) -> Optional[str]:
    up = (machine_id or "").upper()
    for key, couch in get_couch_requirements().items():
        if key.upper() in up:
            return couch
    return None


def analyze_isocenter(plan: PlanSnapshot) -> IsocenterAnalysis:
    groups = group_isocenters(plan.beams)
    origin = plan.user_origin_mm
    geometries = tuple(
        verify_isocenter(g.position_mm, origin, plan.treatment_orientation, plan.structures)
        for g in groups
    )

    origin_in_body = None
    if origin is not None and plan.body_structures:
        origin_in_body = check_containment(origin, plan.structures).in_body

    machines: List[str] = []
    for b in plan.beams:
        if b.treatment_unit and b.treatment_unit not in machines:
            machines.append(b.treatment_unit)

    return IsocenterAnalysis(
        groups=groups,
        geometries=geometries,
        user_origin_mm=origin,
        origin_in_body=origin_in_body,
        setup_markers=tuple(s.id for s in plan.structures if is_setup_marker(s.id)),
        orientation=plan.treatment_orientation,
        head_site=mentions_site([plan.plan_id, plan.plan_name], "HEAD_BRAIN"),
        couch_requirements=tuple((m, couch_requirement(m)) for m in machines),
    )


# =====================================================
# Findings
# =====================================================

def _fmt_cm(v: Vector3) -> str:
    return f"({v[0]:.1f}, {v[1]:.1f}, {v[2]:.1f}) cm"


def geometry_findings(geo: GeometryResult, label: str) -> List[Finding]:
    out: List[Finding] = []
    cfg = get_isocenter_config()
    iso_cm = rounded_cm(geo.isocenter_mm, int(cfg["round_decimals"]))

    if geo.shift_cm is None:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenter shift",
                           f"{label} at {_fmt_cm(iso_cm)}; user origin unavailable, shift not computed"))
    elif geo.directions is None:
        out.append(Finding(
            Category.ISOCENTER, Severity.WARNING, "Isocenter shift",
            f"{label} shift from user origin {_fmt_cm(geo.shift_cm)} (X, Y, Z); "
            "non-standard orientation, directions withheld: verify manually",
            tuple(get_checklist("ISOCENTER_ORIENTATION")),
            {"shift_cm": list(geo.shift_cm)},
        ))
    else:
        words = ", ".join(geo.directions) if geo.directions else "no shift"
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Isocenter shift",
                           f"{label} at {_fmt_cm(iso_cm)}; shift from user origin: {words}",
                           details={"shift_cm": list(geo.shift_cm)}))

    if geo.large_shift_axes and geo.shift_cm is not None:
        parts = [f"{axis}: {abs(geo.shift_cm[_AXES.index(axis)]):.1f} cm" for axis in geo.large_shift_axes]
        out.append(Finding(
            Category.ISOCENTER, Severity.CRITICAL, "Large isocenter shift",
            f"{label} shift exceeds {float(cfg['large_shift_cm']):g} cm on "
            + ", ".join(parts),
            tuple(get_checklist("ISOCENTER_LARGE_SHIFT")),
            {"axes": list(geo.large_shift_axes)},
        ))

    c = geo.containment
    if not c.body_checked:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenter in BODY",
                           f"{label}: no BODY/EXTERNAL structure, body containment not verified"))
    elif not c.in_body:
        out.append(Finding(Category.ISOCENTER, Severity.CRITICAL, "Isocenter in BODY",
                           f"{label} not inside BODY structure"))
    else:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Isocenter in BODY",
                           f"{label} inside BODY structure"))

    if not c.targets_checked:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenter in target",
                           f"{label}: no target structures to verify containment"))
    elif not c.targets_containing:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenter in target",
                           f"{label} not inside any target (PTV/CTV/GTV/ITV)"))
    else:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Isocenter in target",
                           f"{label} inside " + ", ".join(c.targets_containing)))

    for sid, reason in c.failures:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenter containment",
                           f"{sid}: unable to test point containment ({reason})"))
    return out


def isocenter_findings(res: IsocenterAnalysis) -> List[Finding]:
    out: List[Finding] = []

    if not res.groups:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenters",
                           "No treatment beams: isocenter cannot be verified"))
    elif len(res.groups) > 1:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Isocenters",
                           f"Multiple isocenters detected ({len(res.groups)})",
                           details={"groups": [list(g.beam_ids) for g in res.groups]}))
    else:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Isocenters",
                           f"Single isocenter for {len(res.groups[0].beam_ids)} treatment beam(s)"))

    for i, geo in enumerate(res.geometries, start=1):
        label = f"Isocenter {i}" if len(res.groups) > 1 else "Isocenter"
        out.extend(geometry_findings(geo, label))

    # User origin
    if res.user_origin_mm is None:
        out.append(Finding(Category.ISOCENTER, Severity.WARNING, "User origin",
                           "User origin not available"))
    elif res.origin_in_body is False:
        out.append(Finding(Category.ISOCENTER, Severity.CRITICAL, "User origin",
                           "User origin not inside BODY structure"))
    elif res.origin_in_body is True:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "User origin",
                           "User origin inside BODY structure"))

    # Marcadores de setup
    if res.setup_markers:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Setup markers",
                           "Setup marker structures: " + ", ".join(res.setup_markers)))
    else:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Setup markers",
                           "No BB setup marker structure found"))

    # Mesa
    if res.head_site:
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Treatment couch",
                           "Head/brain site: no couch needed",
                           tuple(get_checklist("COUCH_HEAD_SITE"))))
    else:
        for machine, couch in res.couch_requirements:
            if couch is not None:
                out.append(Finding(Category.ISOCENTER, Severity.INFO, "Treatment couch",
                                   f"{machine}: requires {couch}"))
            else:
                out.append(Finding(Category.ISOCENTER, Severity.WARNING, "Treatment couch",
                                   f"{machine}: check machine-specific couch requirements"))
        out.append(Finding(Category.ISOCENTER, Severity.INFO, "Treatment couch",
                           "Couch verification required for non-head site",
                           tuple(get_checklist("COUCH_VERIFICATION"))))
    return out
