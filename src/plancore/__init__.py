# src/plancore/__init__.py

"""
Modelo de datos del plan y utilidades de bajo nivel (naming, geometría,
dose grid voxelizado). El motor de verificación está en `plancheck`.
"""

from .snapshot import (  # noqa: F401
    Beam,
    Bounds,
    Category,
    ControlPoint,
    DoseGrid,
    Finding,
    ImageInfo,
    JawPositions,
    OptimizationObjective,
    PlanSnapshot,
    Prescription,
    Report,
    Severity,
    Structure,
)
from .naming import StructureRole  # noqa: F401
