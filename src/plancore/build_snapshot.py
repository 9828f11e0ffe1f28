# src/plancore/build_snapshot.py

"""
Adaptador dict/JSON → PlanSnapshot.

El host clínico (o un export previo) entrega el plan como dict plano con
las mismas claves que los dataclasses de plancore.snapshot. Aquí se valida
y normaliza UNA vez; el motor de checks nunca ve el dict original.

Errores de formato → SnapshotError (son del llamador, no del motor).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .dose_grid import VoxelDoseGrid
from .snapshot import (
    Beam,
    Bounds,
    ControlPoint,
    DoseGrid,
    ImageInfo,
    JawPositions,
    OptimizationObjective,
    PlanSnapshot,
    PointPredicate,
    Prescription,
    Structure,
    Vector3,
)


class SnapshotError(ValueError):
    """Snapshot de entrada mal formado."""


# ---------------------------------------------------------
# Helpers de parsing
# ---------------------------------------------------------

def _require(data: Mapping[str, Any], key: str, ctx: str) -> Any:
    if key not in data or data[key] is None:
        raise SnapshotError(f"{ctx}: missing required field '{key}'")
    return data[key]


def _float(value: Any, ctx: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise SnapshotError(f"{ctx}: expected a number, got {value!r}") from exc


def _float_or_none(value: Any, ctx: str) -> Optional[float]:
    if value is None:
        return None
    return _float(value, ctx)


def _vector3(value: Any, ctx: str) -> Vector3:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise SnapshotError(f"{ctx}: expected a 3-vector, got {value!r}")
    return (_float(value[0], ctx), _float(value[1], ctx), _float(value[2], ctx))


def _mapping(value: Any, ctx: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SnapshotError(f"{ctx}: expected an object, got {type(value).__name__}")
    return value


def _list(value: Any, ctx: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise SnapshotError(f"{ctx}: expected a list, got {type(value).__name__}")
    return list(value)


# ---------------------------------------------------------
# Sub-objetos
# ---------------------------------------------------------

def _build_prescription(raw: Any) -> Prescription:
    if raw is None:
        return Prescription()
    d = _mapping(raw, "prescription")
    fractions = d.get("number_of_fractions")
    return Prescription(
        dose_per_fraction_cgy=_float_or_none(d.get("dose_per_fraction_cgy"), "prescription"),
        number_of_fractions=int(_float(fractions, "prescription")) if fractions is not None else None,
        total_dose_cgy=_float_or_none(d.get("total_dose_cgy"), "prescription"),
        normalization_value=_float(d.get("normalization_value", 0.0) or 0.0, "prescription"),
        normalization_method=d.get("normalization_method"),
    )


def _build_control_point(raw: Any, ctx: str) -> ControlPoint:
    d = _mapping(raw, ctx)
    jaws = None
    if d.get("jaw_positions") is not None:
        j = _mapping(d["jaw_positions"], f"{ctx}.jaw_positions")
        jaws = JawPositions(
            x1=_float(_require(j, "x1", ctx), ctx),
            x2=_float(_require(j, "x2", ctx), ctx),
            y1=_float(_require(j, "y1", ctx), ctx),
            y2=_float(_require(j, "y2", ctx), ctx),
        )
    return ControlPoint(
        gantry_angle=_float(_require(d, "gantry_angle", ctx), ctx),
        collimator_angle=_float(d.get("collimator_angle", 0.0), ctx),
        couch_angle=_float(d.get("couch_angle", 0.0), ctx),
        jaw_positions=jaws,
    )


def _build_beam(raw: Any, index: int) -> Beam:
    d = _mapping(raw, f"beams[{index}]")
    beam_id = str(_require(d, "id", f"beams[{index}]"))
    ctx = f"beam '{beam_id}'"

    cps = tuple(
        _build_control_point(cp, f"{ctx}.control_points[{i}]")
        for i, cp in enumerate(_list(d.get("control_points"), ctx))
    )
    return Beam(
        id=beam_id,
        energy_mode=str(d.get("energy_mode") or ""),
        mlc_plan_type=str(d.get("mlc_plan_type") or ""),
        monitor_units=_float(d.get("monitor_units", 0.0) or 0.0, ctx),
        treatment_unit=str(d.get("treatment_unit") or ""),
        control_points=cps,
        isocenter_mm=_vector3(d.get("isocenter_mm", (0.0, 0.0, 0.0)), ctx),
        is_setup_field=bool(d.get("is_setup_field", False)),
        reference_image_id=d.get("reference_image_id") or None,
        boluses=tuple(str(b) for b in _list(d.get("boluses"), ctx)),
        dose_rate=_float_or_none(d.get("dose_rate"), ctx),
        ssd_mm=_float_or_none(d.get("ssd_mm"), ctx),
    )


def _build_structure(
    raw: Any,
    index: int,
    predicates: Mapping[str, PointPredicate],
    dose_grid: Optional[DoseGrid],
) -> Structure:
    d = _mapping(raw, f"structures[{index}]")
    sid = str(_require(d, "id", f"structures[{index}]"))
    ctx = f"structure '{sid}'"

    voxel_grid = dose_grid if isinstance(dose_grid, VoxelDoseGrid) and dose_grid.has_mask(sid) else None

    bounds = None
    if d.get("bounds_mm") is not None:
        b = _mapping(d["bounds_mm"], f"{ctx}.bounds_mm")
        bounds = Bounds(
            min_mm=_vector3(_require(b, "min", ctx), ctx),
            max_mm=_vector3(_require(b, "max", ctx), ctx),
        )
    elif voxel_grid is not None:
        bounds = voxel_grid.structure_bounds(sid)

    if d.get("volume_cc") is not None:
        volume = _float(d["volume_cc"], ctx)
    elif voxel_grid is not None:
        volume = voxel_grid.structure_volume_cc(sid)
    else:
        volume = 0.0

    predicate = predicates.get(sid)
    if predicate is None and voxel_grid is not None:
        predicate = voxel_grid.point_predicate(sid)

    return Structure(
        id=sid,
        dicom_type=str(d.get("dicom_type") or ""),
        volume_cc=volume,
        bounds=bounds,
        is_empty=bool(d.get("is_empty", False)),
        point_predicate=predicate,
    )


def _build_image(raw: Any) -> Optional[ImageInfo]:
    if raw is None:
        return None
    d = _mapping(raw, "image")
    origin = d.get("user_origin_mm")
    size = d.get("size", (0, 0, 0))
    if not isinstance(size, (list, tuple)) or len(size) != 3:
        raise SnapshotError(f"image: expected 3 voxel counts, got {size!r}")
    return ImageInfo(
        id=str(_require(d, "id", "image")),
        user_origin_mm=_vector3(origin, "image.user_origin_mm") if origin is not None else None,
        size=(int(size[0]), int(size[1]), int(size[2])),
        resolution_mm=_vector3(d.get("resolution_mm", (0.0, 0.0, 0.0)), "image.resolution_mm"),
    )


def _build_objectives(raw: Any) -> Optional[Tuple[OptimizationObjective, ...]]:
    # None = sin optimization setup; [] = setup sin objetivos
    if raw is None:
        return None
    out: List[OptimizationObjective] = []
    for i, item in enumerate(_list(raw, "optimization_objectives")):
        ctx = f"optimization_objectives[{i}]"
        d = _mapping(item, ctx)
        out.append(
            OptimizationObjective(
                structure_id=str(_require(d, "structure_id", ctx)),
                priority=_float(_require(d, "priority", ctx), ctx),
                kind=str(d.get("kind") or "Objective"),
            )
        )
    return tuple(out)


# ---------------------------------------------------------
# API principal
# ---------------------------------------------------------

def build_snapshot_from_dict(
    data: Mapping[str, Any],
    dose_grid: Optional[DoseGrid] = None,
    predicates: Optional[Mapping[str, PointPredicate]] = None,
) -> PlanSnapshot:
    """
    Construye un PlanSnapshot a partir de un dict plano.

    - dose_grid: capacidad de dosis ya construida (p.ej. VoxelDoseGrid).
      Si es un VoxelDoseGrid, sus máscaras sirven también para volumen,
      bounds y test de contención de las estructuras que no los traigan.
    - predicates: {structure_id: callable(point_mm) -> bool}; tiene
      prioridad sobre las máscaras del grid.

    Lanza SnapshotError si falta plan_id o algún campo tiene tipo inválido.
    """
    d = _mapping(data, "snapshot")
    preds: Mapping[str, PointPredicate] = predicates or {}

    beams = tuple(_build_beam(b, i) for i, b in enumerate(_list(d.get("beams"), "beams")))
    structures = tuple(
        _build_structure(s, i, preds, dose_grid)
        for i, s in enumerate(_list(d.get("structures"), "structures"))
    )

    return PlanSnapshot(
        plan_id=str(_require(d, "plan_id", "snapshot")),
        plan_name=d.get("plan_name"),
        plan_type=d.get("plan_type"),
        course_id=d.get("course_id"),
        approval_status=d.get("approval_status"),
        treatment_orientation=str(d.get("treatment_orientation") or "HeadFirstSupine"),
        prescription=_build_prescription(d.get("prescription")),
        beams=beams,
        structures=structures,
        image=_build_image(d.get("image")),
        dose_grid=dose_grid,
        optimization_objectives=_build_objectives(d.get("optimization_objectives")),
        photon_model=d.get("photon_model"),
        electron_model=d.get("electron_model"),
        has_structure_set=bool(d.get("has_structure_set", bool(structures))),
    )


def load_snapshot_json(
    path: str | Path,
    dose_grid: Optional[DoseGrid] = None,
    predicates: Optional[Mapping[str, PointPredicate]] = None,
) -> PlanSnapshot:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            data: Dict[str, Any] = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise SnapshotError(f"Cannot read snapshot JSON '{p}': {exc}") from exc
    return build_snapshot_from_dict(data, dose_grid=dose_grid, predicates=predicates)
