from __future__ import annotations

import copy
import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TypedDict

from plancheck.config_overrides import (
    apply_overrides_to_configs,
    load_overrides,
)


# ============================================================
# 1) UMBRALES POR ANALIZADOR
#    Cada bloque es un dict plano; los getters devuelven una copia
#    con los overrides del JSON aplicados.
# ============================================================

class CoverageConfig(TypedDict):
    thresholds_by_role: Dict[str, List[float]]  # % de la prescripción
    tier_threshold: float                       # Vx usado para el tier del PTV
    excellent_min: float                        # % de volumen
    acceptable_min: float


COVERAGE_CONFIG: CoverageConfig = {
    "thresholds_by_role": {
        "PTV": [95.0],
        "CTV": [95.0, 98.0, 99.0],
        "GTV": [95.0, 98.0, 99.0],
        "ITV": [95.0, 98.0, 99.0],
    },
    "tier_threshold": 95.0,
    "excellent_min": 95.0,
    "acceptable_min": 90.0,
}

PRESCRIPTION_CONFIG: Dict[str, Any] = {
    # Estimación de baja confianza cuando no hay otra fuente
    "mean_dose_factor": 1.05,
}

HOTSPOT_CONFIG: Dict[str, Any] = {
    "body_hotspot_factor": 1.07,       # × dosis total del plan
    "body_hotspot_cc": 2.0,            # volumen absoluto máximo tolerado
    "max_dose_min_volume_cc": 0.035,   # volumen mínimo para "contiene el Dmax"
    "max_location_tolerance_cgy": 10.0,
}

ISOCENTER_CONFIG: Dict[str, Any] = {
    "large_shift_cm": 20.0,
    "round_decimals": 1,
    # Normalizados: mayúsculas y sin espacios/guiones
    "standard_orientations": ["HEADFIRSTSUPINE", "HFS"],
}

BEAM_CONFIG: Dict[str, Any] = {
    "fff_energy": "6X-FFF",
    "fff_mu_limit": 1400.0,
    "static_gantry_tolerance_deg": 1.0,
}

STRUCTURE_CONFIG: Dict[str, Any] = {
    "max_ct_slices": 399,
    "max_ptv_length_cm": 20.0,
    "length_limited_machine": "LINAC2",
}

OPTIMIZATION_CONFIG: Dict[str, Any] = {
    "upper_priority": 1.0,
    "medium_max_priority": 100.0,
    "max_structures_listed": 8,
}

# Se evalúan en orden: primer substring que matchee el ID de la máquina
MACHINE_COUCH_REQUIREMENTS: Dict[str, str] = {
    "LINAC1": "BrainLAB/iBeam Couch",
    "TB1": "BrainLAB/iBeam Couch",
    "LINAC2": "Exact IGRT Couch (Thin)",
    "TB2": "Exact IGRT Couch (Thin)",
}

THRESHOLD_SECTIONS: Dict[str, Dict[str, Any]] = {
    "COVERAGE": COVERAGE_CONFIG,          # type: ignore[dict-item]
    "PRESCRIPTION": PRESCRIPTION_CONFIG,
    "HOTSPOT": HOTSPOT_CONFIG,
    "ISOCENTER": ISOCENTER_CONFIG,
    "BEAM": BEAM_CONFIG,
    "STRUCTURE": STRUCTURE_CONFIG,
    "OPTIMIZATION": OPTIMIZATION_CONFIG,
}


# ============================================================
# 2) CHECKLISTS
#    Textos de acciones pendientes que acompañan a los findings.
# ============================================================

CHECKLISTS: Dict[str, List[str]] = {
    "PRESCRIPTION": [
        "Rx Site matches treatment area",
        "Technique correctly selected",
        "Modality matches beam energies",
        "Total dose entered correctly",
        "Dose per fraction matches",
        "Number of fractions correct",
        "SiB designation verified if applicable",
        "Pattern (Daily/Weekly) selected",
    ],
    "SIB_PLAN": [
        "Verify each PTV has appropriate dose prescription",
        "Confirm dose gradients between PTVs are acceptable",
        "Check OAR constraints are met for highest dose level",
        "Verify Mosaiq prescription setup for multiple dose levels",
        "Confirm treatment planning approval for SiB technique",
        "Document clinical rationale for simultaneous boost",
    ],
    "BREATHING_COMPENSATED": [
        "Technique documented in Mosaiq",
        "Motion management instructions clear",
        "Patient coaching protocol established",
    ],
    "BREATHING_FREE": [
        "Standard free breathing simulation",
        "No breathing motion compensation needed",
        "Patient able to maintain position consistently",
    ],
    "LATERALITY": [
        "Verify laterality matches clinical target",
        "Confirm field labels indicate correct side",
        "Check setup instructions specify laterality",
    ],
    "POSITIONING": [
        "Field labels reviewed and correct for positioning",
        "Setup field labels appropriate for orientation",
        "Patient positioning matches simulation",
        "Immobilization devices compatible with positioning",
        "Special positioning instructions documented",
    ],
    "PTV_COVERAGE_POOR": [
        "Review target coverage with the planner",
        "Verify prescription dose used for coverage evaluation",
    ],
    "BODY_HOTSPOT": [
        "Verify hotspot >2cc is clinically reasonable",
        "Check if hotspot is in critical structure",
        "Consider plan optimization if hotspot excessive",
        "Document hotspot justification if acceptable",
    ],
    "HOTSPOT_IN_PTV": [
        "Verify location within or near PTV",
    ],
    "HOTSPOT_OUTSIDE_PTV": [
        "URGENT: Verify if this location is clinically acceptable",
        "Consider plan optimization to move hotspot",
        "Document clinical justification if acceptable",
    ],
    "HOTSPOT_IN_BODY": [
        "Verify hotspot location is clinically acceptable",
        "Consider optimization to reduce hotspot",
    ],
    "OPTIMIZATION_MULTI_TARGET": [
        "Verify objective priorities match clinical intent",
    ],
    "OPTIMIZATION_SINGLE_TARGET": [
        "Verify optimization strategy is appropriate",
    ],
    "OPTIMIZATION_SIB_CONCERN": [
        "REVIEW: Consider adding lower priority objectives",
        "VERIFY: All PTVs have appropriate dose objectives",
        "CHECK: Optimization strategy for SiB plan",
    ],
    "OPTIMIZATION_MANUAL": [
        "Manual verification of optimization strategy required",
    ],
    "ISOCENTER_ORIENTATION": [
        "Verify coordinate system matches patient positioning",
        "Confirm laterality interpretation is correct",
        "Check field labels match actual anatomy",
        "Validate setup instructions with positioning",
    ],
    "ISOCENTER_LARGE_SHIFT": [
        "Verify shift values against simulation setup",
        "Confirm shift is transferred correctly to the record and verify system",
    ],
    "COUCH_HEAD_SITE": [
        "Couch excluded from dose calculation",
        "Head rest/immobilization system verified",
    ],
    "COUCH_VERIFICATION": [
        "Correct couch model selected in Eclipse",
        "Couch included in dose calculation",
        "Couch attenuation data current",
        "No couch-gantry collision issues",
    ],
    "TREATMENT_UNITS": [
        "Beam delivery sequence verified",
        "Machine-specific accessories available",
    ],
    "MULTIPLE_UNITS": [
        "Verify this is intentional and properly coordinated",
        "Check for potential scheduling conflicts",
    ],
    "BOLUS": [
        "Bolus information documented in Mosaiq",
        "Bolus setup instructions clear and detailed",
        "Bolus material available in department",
        "Bolus thickness and placement specified",
        "Daily setup verification process established",
        "Bolus positioning reproducibility verified",
        "Alternative bolus materials identified if needed",
    ],
    "NO_BOLUS": [
        "Verify no additional beam modifiers needed",
    ],
    "SETUP_BEAMS": [
        "All setup beams have appropriate jaw sizes",
        "DRRs assigned to all setup beams",
        "Setup beam angles cover treatment area",
        "Setup beam energy appropriate for imaging",
        "Gantry angles accessible for daily setup",
    ],
    "CT_SLICES": [
        "Consider trimming CT to reduce calculation time",
        "Remove unnecessary superior/inferior slices",
        "Verify appropriate scan coverage for treatment site",
        "Check if full body scan was used unnecessarily",
    ],
    "DENSITY_OVERRIDES": [
        "HU assignments verified for all override structures",
        "Dose calculation accuracy confirmed in override regions",
        "High-Z materials (contrast, metal) properly overridden",
        "Prosthetic devices have appropriate density values",
        "CT artifacts minimized or compensated",
    ],
    "NO_DENSITY_OVERRIDES": [
        "Verify CT image quality is adequate",
        "Check for uncontoured high-Z materials",
    ],
    "STATUS_COMMON": [
        "Complete QCLs in Mosaiq",
        "Attach DRRs in Mosaiq",
        "Check Dosimetry adds up in Mosaiq",
        "Check Prescription is filled out",
        "Check Prescription imaging notes added",
        "Check High Dose Mode is used for SRS mode only (Not just SBRT cases)",
        "Check Approve Site Setup in Mosaiq",
        "Check Plan Documents are Planner approved in Mosaiq",
        "Check Shift transferred correctly in Mosaiq",
        "Check Patient Setup image and description is consistent",
        "Check SiB in Rx if found in plan",
        "Check ClearCheck template used and in plan report",
        "Check ISO or Calc Point or Reference point exist inside PTV",
        "Check Hotspots are reasonable",
        "Check Dose Fall Off are reasonable",
        "Check BEV for flash and margins",
    ],
    "STATUS_BOLUS": [
        "Add custom bolus to fields in Mosaiq",
        "Add bolus notes to site setup",
        "Verify bolus thickness and material",
    ],
    "STATUS_COUCH": [
        "Verify correct couch model for treatment machine",
        "Linac1: BrainLAB/iBeam couch",
        "Linac2: Exact IGRT Couch, thin",
    ],
    "STATUS_SIB": [
        "Verify multiple dose levels in Mosaiq prescription",
        "Check dose gradients between PTVs are acceptable",
        "Confirm OAR constraints met for highest dose level",
        "Document clinical rationale for simultaneous boost",
    ],
    # {ct_type} se formatea con el tipo de CT detectado
    "STATUS_MOTION": [
        "Add {ct_type} note to plan documents",
        "Add {ct_type} note to Rx",
        "Add {ct_type} note to site setup",
        "Verify motion management protocol followed",
    ],
}


# ============================================================
# 3) VISTA EFECTIVA (defaults + overrides JSON)
# ============================================================

_OVERRIDES_PATH: Optional[Path] = None

# Vista fijada por pinned_config() durante una evaluación
_PINNED: ContextVar[Optional[Dict[str, Any]]] = ContextVar("plancheck_pinned_config", default=None)


def set_overrides_path(path: str | Path | None) -> None:
    """
    Fija el archivo de overrides que usarán los getters.
    None → plancheck/plan_check_overrides.json.
    """
    global _OVERRIDES_PATH
    _OVERRIDES_PATH = Path(path) if path is not None else None


def build_effective_config(use_overrides: bool = True) -> Dict[str, Any]:
    """
    Construye una vista 'efectiva' de umbrales, checklists y couch:

      - Clonado (deepcopy) de los dicts base
      - Overrides desde el JSON (si use_overrides=True)

    No modifica los dicts globales originales.
    """
    thresholds = copy.deepcopy(THRESHOLD_SECTIONS)
    checklists = copy.deepcopy(CHECKLISTS)
    couch = copy.deepcopy(MACHINE_COUCH_REQUIREMENTS)

    if use_overrides:
        overrides = load_overrides(_OVERRIDES_PATH)
        apply_overrides_to_configs(thresholds, checklists, couch, overrides)

    return {
        "thresholds": thresholds,
        "checklists": checklists,
        "couch_requirements": couch,
    }


@contextmanager
def pinned_config(use_overrides: bool = True) -> Iterator[Dict[str, Any]]:
    """
    Fija UNA vista efectiva mientras dura el bloque. El JSON de overrides
    se lee una sola vez y todos los getters responden desde esa vista, así
    un reporte nunca mezcla dos configuraciones aunque el archivo cambie.

        with pinned_config():
            bundle = run_all_checks(plan)
            report = aggregate(bundle)
    """
    token = _PINNED.set(build_effective_config(use_overrides))
    try:
        yield _PINNED.get()
    finally:
        _PINNED.reset(token)


def _effective_config() -> Dict[str, Any]:
    pinned = _PINNED.get()
    return pinned if pinned is not None else build_effective_config()


def _threshold_section(section: str) -> Dict[str, Any]:
    return copy.deepcopy(_effective_config()["thresholds"][section])


def get_coverage_config() -> Dict[str, Any]:
    return _threshold_section("COVERAGE")


def get_prescription_config() -> Dict[str, Any]:
    return _threshold_section("PRESCRIPTION")


def get_hotspot_config() -> Dict[str, Any]:
    return _threshold_section("HOTSPOT")


def get_isocenter_config() -> Dict[str, Any]:
    return _threshold_section("ISOCENTER")


def get_beam_config() -> Dict[str, Any]:
    return _threshold_section("BEAM")


def get_structure_config() -> Dict[str, Any]:
    return _threshold_section("STRUCTURE")


def get_optimization_config() -> Dict[str, Any]:
    return _threshold_section("OPTIMIZATION")


def get_couch_requirements() -> Dict[str, str]:
    return dict(_effective_config()["couch_requirements"])


def get_checklist(key: str, **fmt: str) -> List[str]:
    """
    Items de checklist para `key`, formateados con `fmt` si se pasan
    placeholders (p.ej. ct_type="4DCT"). Clave desconocida → lista vacía.
    """
    items = _effective_config()["checklists"].get(key, [])
    if fmt:
        return [item.format(**fmt) for item in items]
    return list(items)


# ============================================================
# 4) LOGGING CONFIG
# ============================================================

# Dict estilo logging.config.dictConfig. configure_logging() lo aplica;
# las librerías que embeben el motor pueden ignorarlo y configurar
# sus propios handlers para los loggers "plancheck.*".

LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "level": "INFO",
        },
    },
    "loggers": {
        # Logger principal del motor
        "plancheck": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        # Analizadores individuales (hereda handlers de "plancheck")
        "plancheck.checks": {
            "level": "INFO",
        },
    },
}


def get_logging_config() -> Dict[str, Any]:
    """Copia de LOGGING_CONFIG lista para logging.config.dictConfig."""
    return copy.deepcopy(LOGGING_CONFIG)


def configure_logging(level: Optional[str] = None) -> None:
    cfg = get_logging_config()
    if level is not None:
        cfg["loggers"]["plancheck"]["level"] = level
        cfg["handlers"]["console"]["level"] = level
    logging.config.dictConfig(cfg)


def get_check_logger(name: str = "plancheck") -> logging.Logger:
    """
    Helper simple para obtener un logger consistente en todo el proyecto.
    No llama a dictConfig; se asume que la app lo hará en el arranque.
    """
    return logging.getLogger(name)
