# src/plancore/naming.py

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

# ============================================
# 1) Tipos y dataclass para el naming
# ============================================


class StructureRole(str, Enum):
    PTV = "PTV"
    CTV = "CTV"
    GTV = "GTV"
    ITV = "ITV"
    ORGAN = "ORGAN"
    EXTERNAL = "EXTERNAL"
    SUPPORT = "SUPPORT"
    OTHER = "OTHER"


# Orden en que se analizan/listan los targets en todo el motor
TARGET_ROLES: Tuple[StructureRole, ...] = (
    StructureRole.PTV,
    StructureRole.CTV,
    StructureRole.GTV,
    StructureRole.ITV,
)


class Laterality(str, Enum):
    LEFT = "Left"
    RIGHT = "Right"
    BILATERAL = "Bilateral"


class DosePattern(str, Enum):
    FOUR_DIGIT = "4-digit"
    FIVE_DIGIT = "5-digit"
    DECIMAL_GY = "decimal"


@dataclass(frozen=True)
class NamingHints:
    """
    Pistas semánticas extraídas de un identificador libre (ID de plan,
    de estructura, de imagen...).

    Todos los campos son opcionales: None significa "no se encontró patrón".
    """
    identifier: str
    dose_cgy: Optional[float] = None
    dose_pattern: Optional[DosePattern] = None
    laterality: Optional[Laterality] = None
    breathing_method: Optional[str] = None
    site_hint: Optional[str] = None

    @property
    def has_dose(self) -> bool:
        return self.dose_cgy is not None


# ============================================
# 2) Rol de estructura (PTV / CTV / BODY / ...)
# ============================================

# Tipos DICOM explícitos que se respetan tal cual. Cualquier otro valor
# (vacío, NONE, CONTROL, AVOIDANCE, ...) cae a las reglas por nombre.
_EXPLICIT_DICOM_ROLES = {
    "PTV": StructureRole.PTV,
    "CTV": StructureRole.CTV,
    "GTV": StructureRole.GTV,
    "ITV": StructureRole.ITV,
    "ORGAN": StructureRole.ORGAN,
    "EXTERNAL": StructureRole.EXTERNAL,
    "SUPPORT": StructureRole.SUPPORT,
}

# Reglas por nombre, en orden de precedencia (primer match gana)
_NAME_ROLE_RULES: Tuple[Tuple[Tuple[str, ...], StructureRole], ...] = (
    (("PTV",), StructureRole.PTV),
    (("CTV",), StructureRole.CTV),
    (("GTV",), StructureRole.GTV),
    (("ITV",), StructureRole.ITV),
    (("BODY", "EXTERNAL", "OUTLINE"), StructureRole.EXTERNAL),
    (("COUCH", "TABLE"), StructureRole.SUPPORT),
)


def infer_structure_role(dicom_type: Optional[str], structure_id: str) -> StructureRole:
    """
    Regla única de rol para todo el motor:

      1) Tipo DICOM explícito reconocido (PTV, CTV, GTV, ITV, ORGAN,
         EXTERNAL, SUPPORT).
      2) Si no, match por substring (case-insensitive) del ID contra
         _NAME_ROLE_RULES, en orden.
      3) Si nada aplica → OTHER.
    """
    explicit = (dicom_type or "").strip().upper()
    if explicit in _EXPLICIT_DICOM_ROLES:
        return _EXPLICIT_DICOM_ROLES[explicit]

    up = (structure_id or "").upper()
    for keywords, role in _NAME_ROLE_RULES:
        if any(k in up for k in keywords):
            return role
    return StructureRole.OTHER


# ============================================
# 3) Dosis de prescripción a partir del nombre
# ============================================

def _digits_to_cgy(raw: str) -> Tuple[float, DosePattern]:
    # "5400" → 5400 cGy ; "60000" → 600 cGy (regla literal de 5 dígitos)
    if len(raw) == 4:
        return float(raw), DosePattern.FOUR_DIGIT
    return float(raw) / 100.0, DosePattern.FIVE_DIGIT


def _decimal_gy_to_cgy(raw: str) -> Tuple[float, DosePattern]:
    return float(raw) * 100.0, DosePattern.DECIMAL_GY


_DOSE_RULES: Tuple[Tuple[re.Pattern, Callable[[str], Tuple[float, DosePattern]]], ...] = (
    (re.compile(r"\d{4,5}"), _digits_to_cgy),
    (re.compile(r"\d{2}\.\d"), _decimal_gy_to_cgy),
)


def resolve_dose_cgy(identifier: str) -> Tuple[Optional[float], Optional[DosePattern]]:
    """
    Aplica las reglas de dosis en orden y devuelve (dosis_cGy, patrón).

    Solo se usa el PRIMER match de la primera regla que encuentre algo.
    Si ninguna regla aplica → (None, None).
    """
    up = (identifier or "").upper()
    for pattern, convert in _DOSE_RULES:
        m = pattern.search(up)
        if m is None:
            continue
        return convert(m.group(0))
    return None, None


# ============================================
# 4) Manejo respiratorio
# ============================================

# Más específicos primero: IABC/EABC antes que ABC
_BREATHING_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("IABC",), "iABC"),
    (("EABC",), "eABC"),
    (("ABC",), "ABC"),
    (("BREATH", "BH"), "Breath Hold"),
    (("GATING", "GATED"), "Gating"),
    (("4D",), "4DCT"),
    (("FB",), "Free Breathing"),
)


def resolve_breathing_method(identifier: str) -> Optional[str]:
    up = (identifier or "").upper()
    for keywords, method in _BREATHING_RULES:
        if any(k in up for k in keywords):
            return method
    return None


def detect_breathing_indicators(
    plan_id: str,
    plan_name: Optional[str] = None,
    image_id: Optional[str] = None,
) -> Tuple[bool, List[str]]:
    """
    Recolecta TODOS los indicadores de manejo respiratorio presentes en
    el ID/nombre del plan y en el ID de la imagen.

    Devuelve (compensación_detectada, indicadores). Free breathing se
    reporta como indicador pero no cuenta como compensación.
    """
    texts = [(plan_id or "").upper(), (plan_name or "").upper()]
    indicators: List[str] = []
    compensated = False

    if any("ABC" in t for t in texts):
        compensated = True
        indicators.append("ABC (Active Breathing Coordinator) detected in plan name/ID")
    if any("IABC" in t for t in texts):
        compensated = True
        indicators.append("iABC (inhale ABC) specifically detected")
    if any("EABC" in t for t in texts):
        compensated = True
        indicators.append("eABC (exhale ABC) specifically detected")
    if any("BREATH" in t or "BH" in t for t in texts):
        compensated = True
        indicators.append("Breath Hold technique detected")
    if any("GATING" in t or "GATED" in t for t in texts):
        compensated = True
        indicators.append("Respiratory gating detected in plan name/ID")
    if any("FB" in t for t in texts):
        indicators.append("Free Breathing (FB) detected in plan name/ID")

    img = (image_id or "").upper()
    if img and ("4D" in img or "AVG" in img or "AVERAGE" in img):
        compensated = True
        indicators.append(f"4DCT or averaged CT detected: {image_id}")

    return compensated, indicators


_CT_SCAN_TYPE_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("4DCT", "4D"), "4DCT"),
    (("ABC", "IABC"), "iABC/eABC"),
    (("FB", "FREE"), "Free Breathing"),
    (("AVE", "MEAN"), "Average/Mean"),
)

STANDARD_CT = "Standard CT"


def classify_ct_scan_type(image_id: Optional[str]) -> str:
    up = (image_id or "").upper()
    for keywords, scan_type in _CT_SCAN_TYPE_RULES:
        if any(k in up for k in keywords):
            return scan_type
    return STANDARD_CT


# ============================================
# 5) Lateralidad
# ============================================

_LEFT_TOKENS = {"L", "LT", "LFT"}
_RIGHT_TOKENS = {"R", "RT", "RGT"}


def _tokens(up: str) -> List[str]:
    return [t for t in re.split(r"[^A-Z0-9]+", up) if t]


def _side_flags(identifier: str) -> Tuple[bool, bool, bool]:
    """(izquierda, derecha, bilateral) para un identificador."""
    up = (identifier or "").upper()
    toks = _tokens(up)
    bilateral = "BILAT" in up
    left = "LEFT" in up or any(t in _LEFT_TOKENS for t in toks)
    right = "RIGHT" in up or any(t in _RIGHT_TOKENS for t in toks)
    return left, right, bilateral


def resolve_laterality(identifier: str) -> Optional[Laterality]:
    left, right, bilateral = _side_flags(identifier)
    if bilateral or (left and right):
        return Laterality.BILATERAL
    if left:
        return Laterality.LEFT
    if right:
        return Laterality.RIGHT
    return None


def resolve_structure_set_laterality(identifiers: Iterable[str]) -> Optional[Laterality]:
    """
    Lateralidad del set completo: si aparecen tokens de izquierda Y de
    derecha en cualquier parte del set se escala a BILATERAL.
    """
    any_left = any_right = False
    for ident in identifiers:
        left, right, bilateral = _side_flags(ident)
        if bilateral:
            return Laterality.BILATERAL
        any_left = any_left or left
        any_right = any_right or right
    if any_left and any_right:
        return Laterality.BILATERAL
    if any_left:
        return Laterality.LEFT
    if any_right:
        return Laterality.RIGHT
    return None


def lateral_structure_ids(identifiers: Iterable[str]) -> List[str]:
    return [i for i in identifiers if resolve_laterality(i) is not None]


# ============================================================
# 6) Inferencia simple de sitio anatómico
# ============================================================

_SITE_PATTERNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("HEAD_BRAIN", ("HEAD", "BRAIN", "CNS", "SRS", "CRANIO", "CEREB")),
    ("BREAST", ("BREAST", "MAMA", "CHESTWALL")),
    ("LUNG", ("LUNG", "PULMON")),
    ("PROSTATE", ("PROST",)),
    ("RECTUM", ("RECTUM", "RECTO")),
    ("PELVIS", ("PELVIS", "SACRUM")),
)


def resolve_site_hint(identifier: str) -> Optional[str]:
    up = (identifier or "").upper()
    for site, patterns in _SITE_PATTERNS:
        if any(p in up for p in patterns):
            return site
    return None


def mentions_site(identifiers: Sequence[Optional[str]], site: str) -> bool:
    """True si CUALQUIER identificador apunta a `site` (no solo el primero que matchea)."""
    return any(resolve_site_hint(ident or "") == site for ident in identifiers)


# ============================================================
# 7) Orientación del paciente
# ============================================================

def normalize_orientation(orientation: Optional[str]) -> str:
    """'HeadFirstSupine' / 'Head First-Supine' / 'hfs' → 'HEADFIRSTSUPINE' / 'HFS'."""
    return re.sub(r"[^A-Z0-9]", "", (orientation or "").upper())


def positioning_alerts(orientation: Optional[str]) -> List[str]:
    """
    Alertas de posicionamiento no estándar. Lista vacía para
    head-first supine (o si no hay orientación).
    """
    norm = normalize_orientation(orientation)
    # Abreviaturas DICOM de PatientPosition (HFP, FFS, HFDL, ...)
    abbrev = norm if len(norm) <= 4 else ""
    alerts: List[str] = []
    if "PRONE" in norm or abbrev in ("HFP", "FFP"):
        alerts.extend([
            "PRONE positioning detected",
            "Verify field labels for anterior/posterior orientation",
            "Check patient support equipment compatibility",
        ])
    if "FEETFIRST" in norm or abbrev.startswith("FF"):
        alerts.extend([
            "FEET FIRST positioning detected",
            "Verify field labels and setup field labels",
            "Confirm gantry rotation directions",
        ])
    if "DECUBITUS" in norm or abbrev in ("HFDL", "HFDR", "FFDL", "FFDR"):
        alerts.extend([
            "DECUBITUS positioning detected",
            "Verify field labels and patient setup",
            "Check for pressure point management",
        ])
    return alerts


# ============================================================
# 8) Helpers de estructuras especiales
# ============================================================

_SETUP_MARKER_KEYWORDS = ("BB", "ZBB")
_ARTIFACT_KEYWORDS = ("ARTIFACT", "ZARTIFACT", "HD", "ZHD", "ZDENSITY", "ZCONTRAST")
_KEY_OAR_KEYWORDS = (
    "SPINAL", "CORD", "BRAIN", "LUNG", "HEART", "LIVER",
    "KIDNEY", "ESOPHAG", "RECTUM", "BLADDER",
)


def is_setup_marker(structure_id: str) -> bool:
    up = (structure_id or "").upper()
    return any(k in up for k in _SETUP_MARKER_KEYWORDS)


def is_artifact_structure(structure_id: str) -> bool:
    up = (structure_id or "").upper()
    return any(k in up for k in _ARTIFACT_KEYWORDS)


def is_key_oar(structure_id: str) -> bool:
    up = (structure_id or "").upper()
    return any(k in up for k in _KEY_OAR_KEYWORDS)


# ============================================================
# 9) API principal
# ============================================================

def resolve_identifier(identifier: str) -> NamingHints:
    """
    Extrae todas las pistas de un identificador libre.

    Orden de reglas (cada familia es independiente):
      - dosis:       \\d{4,5} (cGy; 5 dígitos se divide por 100), luego DD.D (Gy)
      - respiración: IABC/EABC > ABC > BH > GATING > 4D > FB
      - lateralidad: BILAT / LEFT,L,LT / RIGHT,R,RT
      - sitio:       tabla _SITE_PATTERNS

    Nunca lanza excepciones: lo que no matchea queda en None.
    """
    text = identifier or ""
    dose_cgy, dose_pattern = resolve_dose_cgy(text)
    return NamingHints(
        identifier=text,
        dose_cgy=dose_cgy,
        dose_pattern=dose_pattern,
        laterality=resolve_laterality(text),
        breathing_method=resolve_breathing_method(text),
        site_hint=resolve_site_hint(text),
    )


"""
Notas
=====

Este módulo convierte strings caóticos (IDs de plan, estructuras, imágenes)
en pistas semánticas. Todas las reglas viven en tablas ordenadas
(_DOSE_RULES, _BREATHING_RULES, _NAME_ROLE_RULES, _SITE_PATTERNS, ...) para
que la precedencia sea explícita y testeable.

Sobre la regla de 5 dígitos
---------------------------

"PTV60000" → 600 cGy. Es la regla literal que se usa en el checklist
clínico y casi seguro no es intencional (54.00 Gy ya aparece como "5400"
con la regla de 4 dígitos). Se conserva tal cual; los checks de cobertura
registran qué patrón se usó para que el físico pueda detectarlo.
"""
