# src/plancheck/checks/structures.py

"""
checks/structures.py
====================

Checks del structure set (categoría Structure):

  - conteo de estructuras por rol
  - número de cortes del CT
  - estructuras de artefacto / override de densidad
  - estructuras vacías
  - longitud superior-inferior de los PTV (límite de máquina)
  - OARs clave presentes
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from plancore.naming import StructureRole, is_artifact_structure, is_key_oar
from plancore.snapshot import Category, Finding, PlanSnapshot, Severity
from plancheck.config import get_checklist, get_structure_config


@dataclass(frozen=True)
class StructureAnalysis:
    total: int
    counts_by_role: Tuple[Tuple[str, int], ...]
    ct_slices: Optional[int]
    artifact_ids: Tuple[str, ...]
    empty_ids: Tuple[str, ...]
    ptv_lengths_cm: Tuple[Tuple[str, float], ...]
    long_ptvs: Tuple[Tuple[str, float], ...]
    key_oars: Tuple[str, ...]


def analyze_structures(plan: PlanSnapshot) -> StructureAnalysis:
    cfg = get_structure_config()
    max_len = float(cfg["max_ptv_length_cm"])

    counts: Dict[str, int] = {}
    for s in plan.structures:
        counts[s.role.value] = counts.get(s.role.value, 0) + 1
    ordered = tuple((r.value, counts[r.value]) for r in StructureRole if r.value in counts)

    lengths = tuple(
        (s.id, s.bounds.size_z_mm / 10.0)
        for s in plan.ptvs
        if s.bounds is not None and not s.is_empty
    )

    return StructureAnalysis(
        total=len(plan.structures),
        counts_by_role=ordered,
        ct_slices=plan.image.num_slices if plan.image is not None else None,
        artifact_ids=tuple(s.id for s in plan.structures if is_artifact_structure(s.id)),
        empty_ids=tuple(s.id for s in plan.structures if s.is_empty),
        ptv_lengths_cm=lengths,
        long_ptvs=tuple((sid, length) for sid, length in lengths if length > max_len),
        key_oars=tuple(
            s.id for s in plan.structures
            if s.role not in (StructureRole.EXTERNAL,) and not s.is_target and is_key_oar(s.id)
        ),
    )


def structure_findings(res: StructureAnalysis) -> List[Finding]:
    cfg = get_structure_config()
    out: List[Finding] = []

    if res.total == 0:
        out.append(Finding(Category.STRUCTURE, Severity.WARNING, "Structure set",
                           "No structures in structure set"))
    else:
        roles = ", ".join(f"{role}: {n}" for role, n in res.counts_by_role)
        out.append(Finding(Category.STRUCTURE, Severity.INFO, "Structure set",
                           f"{res.total} structures ({roles})"))

    # CT
    if res.ct_slices is not None:
        max_slices = int(cfg["max_ct_slices"])
        if res.ct_slices > max_slices:
            out.append(Finding(Category.STRUCTURE, Severity.WARNING, "CT slices",
                               f"CT has {res.ct_slices} slices (> {max_slices})",
                               tuple(get_checklist("CT_SLICES"))))
        else:
            out.append(Finding(Category.STRUCTURE, Severity.INFO, "CT slices",
                               f"CT has {res.ct_slices} slices"))

    # Overrides de densidad
    if res.artifact_ids:
        out.append(Finding(Category.STRUCTURE, Severity.WARNING, "Density overrides",
                           "Artifact/density override structures: " + ", ".join(res.artifact_ids),
                           tuple(get_checklist("DENSITY_OVERRIDES"))))
    else:
        out.append(Finding(Category.STRUCTURE, Severity.INFO, "Density overrides",
                           "No artifact or density override structures",
                           tuple(get_checklist("NO_DENSITY_OVERRIDES"))))

    # Vacías
    if res.empty_ids:
        out.append(Finding(Category.STRUCTURE, Severity.WARNING, "Empty structures",
                           "Empty structures: " + ", ".join(res.empty_ids)))

    # Longitud de PTV
    machine = cfg["length_limited_machine"]
    for sid, length in res.long_ptvs:
        out.append(Finding(
            Category.STRUCTURE, Severity.WARNING, "PTV length",
            f"{sid}: superior-inferior length {length:.1f} cm "
            f"(> {float(cfg['max_ptv_length_cm']):g} cm), not compatible with {machine}",
        ))
    for sid, length in res.ptv_lengths_cm:
        if (sid, length) not in res.long_ptvs:
            out.append(Finding(Category.STRUCTURE, Severity.INFO, "PTV length",
                               f"{sid}: superior-inferior length {length:.1f} cm"))

    if res.key_oars:
        out.append(Finding(Category.STRUCTURE, Severity.INFO, "Key OARs",
                           "Key OARs: " + ", ".join(res.key_oars)))
    return out
