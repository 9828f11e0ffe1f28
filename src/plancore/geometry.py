from typing import Iterable, Optional, Tuple

import numpy as np

Vector3 = Tuple[float, float, float]


def compute_volume_cc(mask: np.ndarray,
                      spacing: Tuple[float, float, float]) -> float:
    dz, dy, dx = spacing
    voxel_vol_mm3 = float(dz * dy * dx)
    num_voxels = int(np.count_nonzero(mask))
    return num_voxels * voxel_vol_mm3 / 1000.0


def compute_bounds_mm(mask: np.ndarray,
                      spacing: Tuple[float, float, float],
                      origin_mm: Vector3) -> Optional[Tuple[Vector3, Vector3]]:
    """
    Caja envolvente de una máscara (z, y, x) en coordenadas de paciente (x, y, z).
    None si la máscara está vacía.
    """
    idx = np.argwhere(mask)
    if idx.size == 0:
        return None

    dz, dy, dx = spacing
    x0, y0, z0 = origin_mm
    lo = idx.min(axis=0)
    hi = idx.max(axis=0)
    min_mm = (float(x0 + lo[2] * dx), float(y0 + lo[1] * dy), float(z0 + lo[0] * dz))
    max_mm = (float(x0 + hi[2] * dx), float(y0 + hi[1] * dy), float(z0 + hi[0] * dz))
    return min_mm, max_mm


def point_to_voxel_index(point_mm: Vector3,
                         spacing: Tuple[float, float, float],
                         origin_mm: Vector3,
                         shape: Tuple[int, int, int]) -> Optional[Tuple[int, int, int]]:
    """
    Voxel más cercano (z, y, x) para un punto (x, y, z) en mm.
    None si cae fuera de la grilla.
    """
    dz, dy, dx = spacing
    ix = int(round((point_mm[0] - origin_mm[0]) / dx))
    iy = int(round((point_mm[1] - origin_mm[1]) / dy))
    iz = int(round((point_mm[2] - origin_mm[2]) / dz))
    nz, ny, nx = shape
    if not (0 <= ix < nx and 0 <= iy < ny and 0 <= iz < nz):
        return None
    return iz, iy, ix


# ---------------------------------------------------------
# Desplazamientos isocentro / user origin
# ---------------------------------------------------------

def shift_cm(point_mm: Vector3, reference_mm: Vector3) -> Vector3:
    """(point - reference) en cm."""
    p = np.asarray(point_mm, dtype=float)
    r = np.asarray(reference_mm, dtype=float)
    d = (p - r) / 10.0
    return float(d[0]), float(d[1]), float(d[2])


def round_vector(v: Vector3, decimals: int = 1) -> Vector3:
    """
    Único helper de redondeo para comparar posiciones y shifts en cm
    (agrupación de isocentros, límites de shift, palabras direccionales).
    """
    return round(v[0], decimals), round(v[1], decimals), round(v[2], decimals)


def rounded_cm(point_mm: Vector3, decimals: int = 1) -> Vector3:
    return round_vector((point_mm[0] / 10.0, point_mm[1] / 10.0, point_mm[2] / 10.0), decimals)


def axes_exceeding(shift: Vector3, limit_cm: float,
                   labels: Iterable[str] = ("X", "Y", "Z")) -> Tuple[str, ...]:
    return tuple(lab for lab, v in zip(labels, shift) if abs(v) > limit_cm)
