"""
plancheck.config_overrides
--------------------------

Capa muy ligera para manejar overrides de configuración (umbrales de
clínica, textos de checklist, couch por máquina) sin tocar los
diccionarios base definidos en plancheck.config.

Schema del JSON (plan_check_overrides.json):

{
  "thresholds": {
    "HOTSPOT": {
      "body_hotspot_cc": 3.0
    },
    "BEAM": { "fff_mu_limit": 1600.0 }
  },
  "checklists": {
    "BOLUS": ["...", "..."]
  },
  "couch_requirements": {
    "LINAC3": "Exact IGRT Couch (Thin)"
  }
}
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

# Ruta por defecto (mismo directorio que plancheck/config.py)
OVERRIDES_FILE = Path(__file__).resolve().parent / "plan_check_overrides.json"

DEFAULT_OVERRIDES: Dict[str, Any] = {
    "thresholds": {},
    "checklists": {},
    "couch_requirements": {},
}

_logger = logging.getLogger("plancheck.config")


# ---------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------

def load_overrides(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Lee el archivo de overrides (JSON) y devuelve un dict
    siempre con claves 'thresholds', 'checklists' y 'couch_requirements'.

    Si no existe o está roto, devuelve DEFAULT_OVERRIDES.
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    if not p.exists():
        return copy.deepcopy(DEFAULT_OVERRIDES)

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        _logger.warning("Ignoring unreadable overrides file %s: %s", p, exc)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    if not isinstance(data, dict):
        _logger.warning("Ignoring overrides file %s: top-level value is not an object", p)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    for key in DEFAULT_OVERRIDES:
        if not isinstance(data.get(key), dict):
            data[key] = {}
    return data


def save_overrides(overrides: Dict[str, Any], path: str | Path | None = None) -> None:
    """Guarda el dict de overrides en disco (solo las claves conocidas)."""
    p = Path(path) if path is not None else OVERRIDES_FILE

    to_dump = {key: overrides.get(key, {}) for key in DEFAULT_OVERRIDES}

    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(to_dump, f, ensure_ascii=False, indent=2)


# ---------------------------------------------------------------------
# Aplicar overrides sobre dicts ya clonados
# ---------------------------------------------------------------------

def apply_overrides_to_configs(
    thresholds_cfg: Dict[str, Dict[str, Any]],
    checklists_cfg: Dict[str, List[str]],
    couch_cfg: Dict[str, str],
    overrides: Dict[str, Any],
) -> None:
    """
    Modifica IN PLACE los dicts clonados aplicando lo que venga en overrides.

    - thresholds: solo secciones existentes; dentro de ellas cualquier clave.
    - checklists: reemplaza la lista completa de una clave existente.
    - couch_requirements: agrega o reemplaza entradas por máquina.
    """
    # ---- Umbrales ----
    for section, sec_override in overrides.get("thresholds", {}).items():
        if section not in thresholds_cfg or not isinstance(sec_override, dict):
            continue
        base = thresholds_cfg[section]
        for k, v in sec_override.items():
            base[k] = v

    # ---- Checklists ----
    for key, items in overrides.get("checklists", {}).items():
        if key not in checklists_cfg or not isinstance(items, list):
            continue
        checklists_cfg[key] = [str(i) for i in items]

    # ---- Couch por máquina ----
    for machine, couch in overrides.get("couch_requirements", {}).items():
        couch_cfg[str(machine).upper()] = str(couch)
