# src/plancore/dose_grid.py

"""
dose_grid.py
============

Implementación del protocolo DoseGrid sobre arrays NumPy:

  - dose_cgy: matriz 3D de dosis en cGy, ordenada (z, y, x)
  - masks:    dict {structure_id: máscara booleana (z, y, x)} sobre la misma grilla

Las métricas DVH siguen la convención del motor de QA:

  Vx → fracción de voxeles con dosis >= x
  Dx → percentil (100 − x) de las dosis dentro de la estructura
"""

from __future__ import annotations

from functools import partial
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from .geometry import compute_bounds_mm, compute_volume_cc, point_to_voxel_index
from .snapshot import Bounds, PointPredicate, Structure, Vector3


def _compute_Vx(dose_vals: np.ndarray, x_cgy: float) -> float:
    """Fracción de voxeles con dosis >= x_cgy."""
    if dose_vals.size == 0:
        return 0.0
    return float(np.mean(dose_vals >= x_cgy))


def _compute_Dx(dose_vals: np.ndarray, x_percent: float) -> float:
    """
    D_x%: dosis tal que x% del volumen recibe al menos esa dosis.
    D0% es el máximo.
    """
    if dose_vals.size == 0:
        return 0.0
    p = min(100.0, max(0.0, 100.0 - x_percent))
    return float(np.percentile(dose_vals, p))


class VoxelDoseGrid:
    """
    Dose grid voxelizado.

    spacing_mm va en orden (dz, dy, dx) como los arrays; origin_mm es la
    posición (x, y, z) del voxel [0, 0, 0].
    """

    def __init__(
        self,
        dose_cgy: np.ndarray,
        masks: Mapping[str, np.ndarray],
        spacing_mm: Tuple[float, float, float],
        origin_mm: Vector3 = (0.0, 0.0, 0.0),
    ) -> None:
        dose = np.asarray(dose_cgy, dtype=float)
        if dose.ndim != 3:
            raise ValueError(f"dose_cgy must be 3D (z, y, x), got shape {dose.shape}")

        checked: Dict[str, np.ndarray] = {}
        for sid, mask in masks.items():
            m = np.asarray(mask, dtype=bool)
            if m.shape != dose.shape:
                raise ValueError(
                    f"Mask for '{sid}' has shape {m.shape}, dose grid is {dose.shape}"
                )
            checked[sid] = m

        self._dose = dose
        self._masks = checked
        self._spacing = tuple(float(s) for s in spacing_mm)
        self._origin = tuple(float(o) for o in origin_mm)

    # -------------------------
    # Atributos del protocolo
    # -------------------------

    @property
    def max_dose_cgy(self) -> float:
        if self._dose.size == 0:
            return 0.0
        return float(self._dose.max())

    @property
    def resolution_mm(self) -> Vector3:
        dz, dy, dx = self._spacing
        return dx, dy, dz

    @property
    def size(self) -> Tuple[int, int, int]:
        nz, ny, nx = self._dose.shape
        return nx, ny, nz

    # -------------------------
    # DVH
    # -------------------------

    def _values(self, structure: Structure) -> np.ndarray:
        mask = self._masks.get(structure.id)
        if mask is None:
            raise KeyError(f"No mask for structure '{structure.id}' in dose grid")
        return self._dose[mask]

    def volume_at_dose(self, structure: Structure, dose_cgy: float, relative: bool = True) -> float:
        vals = self._values(structure)
        frac = _compute_Vx(vals, dose_cgy)
        if relative:
            return frac * 100.0
        voxel_cc = float(np.prod(self._spacing)) / 1000.0
        return frac * vals.size * voxel_cc

    def dose_at_volume(self, structure: Structure, volume_percent: float) -> float:
        return _compute_Dx(self._values(structure), volume_percent)

    def mean_dose(self, structure: Structure) -> float:
        vals = self._values(structure)
        if vals.size == 0:
            return 0.0
        return float(vals.mean())

    # -------------------------
    # Geometría de máscaras
    # -------------------------

    def has_mask(self, structure_id: str) -> bool:
        return structure_id in self._masks

    def contains_point(self, structure_id: str, point_mm: Vector3) -> bool:
        mask = self._masks.get(structure_id)
        if mask is None:
            return False
        idx = point_to_voxel_index(point_mm, self._spacing, self._origin, mask.shape)
        if idx is None:
            return False
        return bool(mask[idx])

    def point_predicate(self, structure_id: str) -> PointPredicate:
        return partial(self.contains_point, structure_id)

    def structure_volume_cc(self, structure_id: str) -> float:
        mask = self._masks.get(structure_id)
        if mask is None:
            return 0.0
        return compute_volume_cc(mask, self._spacing)

    def structure_bounds(self, structure_id: str) -> Optional[Bounds]:
        mask = self._masks.get(structure_id)
        if mask is None:
            return None
        box = compute_bounds_mm(mask, self._spacing, self._origin)
        if box is None:
            return None
        return Bounds(min_mm=box[0], max_mm=box[1])
