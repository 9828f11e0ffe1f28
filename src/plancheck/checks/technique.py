# src/plancheck/checks/technique.py

"""
checks/technique.py
===================

Clasificación de la técnica de tratamiento (VMAT / IMRT / 3D-CRT /
Electron / Proton / SRS / SBRT) a partir de las etiquetas de energía y
MLC de cada beam.

El resultado depende solo de qué clases de beam aparecen y cuántas hay,
nunca del orden de los beams.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from plancore.snapshot import Beam, Category, Finding, Severity

PHOTON = "Photon"
ELECTRON = "Electron"
PROTON = "Proton"

VMAT = "VMAT"
IMRT = "IMRT"
CRT_3D = "3D-CRT"
UNKNOWN = "Unknown"

_ELECTRON_RE = re.compile(r"\d+\s*(E|MEV)\b")

# (keywords en la etiqueta MLC, técnica, es arco, es regla por defecto)
_MLC_RULES: Tuple[Tuple[Tuple[str, ...], str, bool], ...] = (
    (("VMAT",), VMAT, True),
    (("IMRT", "DOSEDYNAMIC"), IMRT, False),
    (("ARC",), CRT_3D, True),
    (("STATIC", "CONFORMAL", "DYNAMIC"), CRT_3D, False),
)


@dataclass(frozen=True)
class BeamClass:
    beam_id: str
    modality: str
    technique: str
    is_arc: bool
    energy: str
    defaulted: bool = False


@dataclass(frozen=True)
class TechniqueResult:
    technique: str
    rationale: Tuple[str, ...]
    arc_count: int
    static_count: int
    modalities: Tuple[str, ...]
    energies: Tuple[str, ...]
    beam_classes: Tuple[BeamClass, ...]


def _tokens(text: str) -> List[str]:
    return [t for t in re.split(r"[^A-Z0-9]+", text) if t]


def beam_modality(beam: Beam) -> str:
    energy = (beam.energy_mode or "").upper()
    mlc = (beam.mlc_plan_type or "").upper()
    if _ELECTRON_RE.search(energy):
        return ELECTRON
    if "PROTON" in energy or "P" in _tokens(energy) or "PROTON" in mlc:
        return PROTON
    return PHOTON


def classify_beam(beam: Beam) -> BeamClass:
    modality = beam_modality(beam)
    if modality == ELECTRON:
        return BeamClass(beam.id, modality, ELECTRON, False, beam.energy_mode)
    if modality == PROTON:
        return BeamClass(beam.id, modality, PROTON, False, beam.energy_mode)

    mlc = (beam.mlc_plan_type or "").upper()
    for keywords, technique, is_arc in _MLC_RULES:
        if any(k in mlc for k in keywords):
            return BeamClass(beam.id, modality, technique, is_arc, beam.energy_mode)
    return BeamClass(beam.id, modality, CRT_3D, False, beam.energy_mode, defaulted=True)


def _identifier_technique(plan_identifiers: Sequence[str]) -> Tuple[str, str] | None:
    ups = [(i or "").upper() for i in plan_identifiers]
    if any("SRS" in u for u in ups):
        return "SRS", "SRS detected from plan type/ID"
    if any("SBRT" in u for u in ups):
        return "SBRT", "SBRT detected from plan type/ID"
    return None


def _vmat_wording(arc_count: int) -> str:
    if arc_count == 1:
        return "Single arc VMAT"
    if arc_count == 2:
        return "Dual arc VMAT"
    return f"Multi-arc VMAT ({arc_count} arcs)"


def classify_technique(beams: Sequence[Beam], plan_identifiers: Sequence[str]) -> TechniqueResult:
    """
    Clasifica la técnica del plan.

    1) Tokens SRS / SBRT en los identificadores del plan → cortocircuito.
    2) Solo beams de tratamiento (no setup).
    3) Electron + Proton > Electron > Proton > VMAT > IMRT > 3D-CRT.
    """
    treatment = [b for b in beams if not b.is_setup_field]
    classes = tuple(classify_beam(b) for b in treatment)

    photons = [c for c in classes if c.modality == PHOTON]
    arc_count = sum(1 for c in photons if c.is_arc)
    static_count = sum(1 for c in photons if not c.is_arc)
    modalities = tuple(sorted({c.modality for c in classes}))
    energies = tuple(sorted({c.energy for c in classes if c.energy}))

    def result(technique: str, rationale: List[str]) -> TechniqueResult:
        return TechniqueResult(
            technique=technique,
            rationale=tuple(rationale),
            arc_count=arc_count,
            static_count=static_count,
            modalities=modalities,
            energies=energies,
            beam_classes=classes,
        )

    by_identifier = _identifier_technique(plan_identifiers)
    if by_identifier is not None:
        return result(by_identifier[0], [by_identifier[1]])

    if not classes:
        return result(UNKNOWN, ["No treatment beams found"])

    has_electron = ELECTRON in modalities
    has_proton = PROTON in modalities

    if has_electron and has_proton:
        return result("Electron + Proton", ["Mixed modality: Electron and Proton beams detected"])

    if has_electron:
        e_energies = sorted({c.energy for c in classes if c.modality == ELECTRON})
        rationale = ["Electron beam therapy detected", "Electron energies: " + ", ".join(e_energies)]
        if photons:
            rationale.append(f"Photon beams also present: {len(photons)} beam(s)")
        return result(ELECTRON, rationale)

    if has_proton:
        return result(PROTON, ["Proton beam therapy detected"])

    present = {c.technique for c in photons}
    if VMAT in present:
        vmat_arcs = sum(1 for c in photons if c.technique == VMAT)
        rationale = [f"Arc beams detected: {arc_count} arc beam(s)"]
        if static_count > 0:
            rationale.append("Mixed technique: VMAT + static beams")
        rationale.append(_vmat_wording(vmat_arcs))
        return result(VMAT, rationale)

    if IMRT in present:
        rationale = ["IMRT beams detected: MLC-based intensity modulation"]
        if arc_count > 0:
            rationale.append(f"Arc beams detected: {arc_count} arc beam(s)")
        return result(IMRT, rationale)

    rationale = []
    if arc_count > 0:
        rationale.append(f"Arc beams detected: {arc_count} arc beam(s)")
    if static_count > 0:
        rationale.append(f"Static beams detected: {static_count} static beam(s)")
    if any(c.defaulted for c in photons):
        rationale.append("Defaulted to 3D-CRT - static beam configuration")
    return result(CRT_3D, rationale)


# =====================================================
# Findings
# =====================================================

def technique_findings(result: TechniqueResult) -> List[Finding]:
    details = {
        "arc_count": result.arc_count,
        "static_count": result.static_count,
        "modalities": list(result.modalities),
        "energies": list(result.energies),
    }
    if result.technique == UNKNOWN:
        return [
            Finding(
                category=Category.PLAN,
                severity=Severity.WARNING,
                name="Treatment technique",
                message="Unable to determine technique: no treatment beams",
                details=details,
            )
        ]

    message = f"Technique: {result.technique}"
    if result.rationale:
        message += " (" + "; ".join(result.rationale) + ")"
    return [
        Finding(
            category=Category.PLAN,
            severity=Severity.INFO,
            name="Treatment technique",
            message=message,
            details=details,
        )
    ]
