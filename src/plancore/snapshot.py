from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .naming import TARGET_ROLES, StructureRole, infer_structure_role

Vector3 = Tuple[float, float, float]


# ---------------------------------------------------------
# Prescripción
# ---------------------------------------------------------

@dataclass(frozen=True)
class Prescription:
    """
    Prescripción del plan. Todas las dosis en cGy.

    normalization_value es un porcentaje; 0.0 significa "no definido"
    (convención del TPS).
    """
    dose_per_fraction_cgy: Optional[float] = None
    number_of_fractions: Optional[int] = None
    total_dose_cgy: Optional[float] = None
    normalization_value: float = 0.0
    normalization_method: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.dose_per_fraction_cgy is not None and self.number_of_fractions is not None


# ---------------------------------------------------------
# Beams / control points
# ---------------------------------------------------------

@dataclass(frozen=True)
class JawPositions:
    x1: float
    x2: float
    y1: float
    y2: float

    @property
    def x_size_cm(self) -> float:
        return abs(self.x2 - self.x1) / 10.0

    @property
    def y_size_cm(self) -> float:
        return abs(self.y2 - self.y1) / 10.0


@dataclass(frozen=True)
class ControlPoint:
    gantry_angle: float
    collimator_angle: float = 0.0
    couch_angle: float = 0.0
    jaw_positions: Optional[JawPositions] = None


@dataclass(frozen=True)
class Beam:
    """
    Beam/arco individual del plan.

    Attributes
    ----------
    energy_mode : str
        Etiqueta de energía tal como la muestra el TPS ("6X", "6X-FFF", "9E").
    mlc_plan_type : str
        Etiqueta de técnica/MLC ("VMAT", "DoseDynamic", "Static", ...).
    isocenter_mm : Vector3
        Posición del isocentro en coordenadas DICOM (mm).
    """
    id: str
    energy_mode: str
    mlc_plan_type: str = ""
    monitor_units: float = 0.0
    treatment_unit: str = ""
    control_points: Tuple[ControlPoint, ...] = ()
    isocenter_mm: Vector3 = (0.0, 0.0, 0.0)
    is_setup_field: bool = False
    reference_image_id: Optional[str] = None
    boluses: Tuple[str, ...] = ()
    dose_rate: Optional[float] = None
    ssd_mm: Optional[float] = None

    @property
    def gantry_start(self) -> Optional[float]:
        if not self.control_points:
            return None
        return self.control_points[0].gantry_angle

    @property
    def gantry_end(self) -> Optional[float]:
        if not self.control_points:
            return None
        return self.control_points[-1].gantry_angle


# ---------------------------------------------------------
# Estructuras
# ---------------------------------------------------------

@dataclass(frozen=True)
class Bounds:
    min_mm: Vector3
    max_mm: Vector3

    @property
    def size_z_mm(self) -> float:
        return abs(self.max_mm[2] - self.min_mm[2])


PointPredicate = Callable[[Vector3], bool]


@dataclass(frozen=True)
class Structure:
    """
    Estructura del structure set.

    El test de contención de punto se inyecta como callable
    (point_predicate); sin predicado no hay segmentación consultable y
    is_point_inside devuelve False.
    """
    id: str
    dicom_type: str = ""
    volume_cc: float = 0.0
    bounds: Optional[Bounds] = None
    is_empty: bool = False
    point_predicate: Optional[PointPredicate] = field(default=None, repr=False, compare=False)

    @property
    def role(self) -> StructureRole:
        return infer_structure_role(self.dicom_type, self.id)

    @property
    def is_target(self) -> bool:
        return self.role in TARGET_ROLES

    def is_point_inside(self, point_mm: Vector3) -> bool:
        if self.point_predicate is None:
            return False
        return bool(self.point_predicate(point_mm))


# ---------------------------------------------------------
# Imagen (CT) y optimización
# ---------------------------------------------------------

@dataclass(frozen=True)
class ImageInfo:
    id: str
    user_origin_mm: Optional[Vector3] = None
    size: Tuple[int, int, int] = (0, 0, 0)          # (x, y, z) voxels
    resolution_mm: Vector3 = (0.0, 0.0, 0.0)       # (x, y, z)

    @property
    def num_slices(self) -> int:
        return int(self.size[2])


@dataclass(frozen=True)
class OptimizationObjective:
    structure_id: str
    priority: float
    kind: str = "Objective"


# ---------------------------------------------------------
# Dose grid (capacidad, no datos)
# ---------------------------------------------------------

class DoseGrid(Protocol):
    """
    Accesores de dosis que el motor consulta. Dosis en cGy.

    volume_at_dose devuelve % del volumen si relative=True, cm³ si no.
    """
    max_dose_cgy: float
    resolution_mm: Vector3
    size: Tuple[int, int, int]

    def volume_at_dose(self, structure: Structure, dose_cgy: float, relative: bool = True) -> float:
        ...

    def dose_at_volume(self, structure: Structure, volume_percent: float) -> float:
        ...

    def mean_dose(self, structure: Structure) -> float:
        ...


# ---------------------------------------------------------
# Snapshot completo del plan
# ---------------------------------------------------------

@dataclass(frozen=True)
class PlanSnapshot:
    """
    Vista inmutable y normalizada de UN plan, construida una sola vez
    por el adaptador externo (ver plancore.build_snapshot).

    optimization_objectives:
        None → el plan no tiene optimization setup (importado/manual).
        ()   → hay setup pero sin objetivos.
    """
    plan_id: str
    treatment_orientation: str = "HeadFirstSupine"
    prescription: Prescription = field(default_factory=Prescription)
    beams: Tuple[Beam, ...] = ()
    structures: Tuple[Structure, ...] = ()
    plan_name: Optional[str] = None
    plan_type: Optional[str] = None
    course_id: Optional[str] = None
    approval_status: Optional[str] = None
    image: Optional[ImageInfo] = None
    dose_grid: Optional[DoseGrid] = field(default=None, compare=False)
    optimization_objectives: Optional[Tuple[OptimizationObjective, ...]] = None
    photon_model: Optional[str] = None
    electron_model: Optional[str] = None
    has_structure_set: bool = True

    @property
    def plan_identifiers(self) -> Tuple[str, ...]:
        return tuple(s for s in (self.plan_id, self.plan_name, self.plan_type) if s)

    @property
    def total_dose_cgy(self) -> Optional[float]:
        return self.prescription.total_dose_cgy

    @property
    def treatment_beams(self) -> List[Beam]:
        return [b for b in self.beams if not b.is_setup_field]

    @property
    def setup_beams(self) -> List[Beam]:
        return [b for b in self.beams if b.is_setup_field]

    @property
    def user_origin_mm(self) -> Optional[Vector3]:
        return self.image.user_origin_mm if self.image is not None else None

    def structures_with_role(self, role: StructureRole) -> List[Structure]:
        return [s for s in self.structures if s.role == role]

    @property
    def ptvs(self) -> List[Structure]:
        return self.structures_with_role(StructureRole.PTV)

    @property
    def targets(self) -> List[Structure]:
        """Targets agrupados por rol: PTVs, CTVs, GTVs, ITVs."""
        out: List[Structure] = []
        for role in TARGET_ROLES:
            out.extend(self.structures_with_role(role))
        return out

    @property
    def body_structures(self) -> List[Structure]:
        return self.structures_with_role(StructureRole.EXTERNAL)


# ---------------------------------------------------------
# Findings y reporte
# ---------------------------------------------------------

class Severity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return {"Info": 0, "Warning": 1, "Critical": 2}[self.value]


class Category(str, Enum):
    PLAN = "Plan"
    DOSE = "Dose"
    BEAM = "Beam"
    STRUCTURE = "Structure"
    ISOCENTER = "Isocenter"
    STATUS = "Status"


CATEGORY_ORDER: Tuple[Category, ...] = tuple(Category)


def freeze_details(value: Any) -> Any:
    """dict → MappingProxyType, list/tuple → tuple (recursivo)."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_details(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_details(v) for v in value)
    return value


@dataclass(frozen=True)
class Finding:
    """
    Resultado individual de la verificación.

    - name: nombre corto del check (ej. "PTV coverage (V95%)")
    - message: explicación legible
    - checklist_items: acciones pendientes (sin marcar) para el físico
    - details: datos estructurados para debug/log, congelados al construir
      (no entran en el hash)
    """
    category: Category
    severity: Severity
    name: str
    message: str
    checklist_items: Tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "checklist_items", tuple(self.checklist_items))
        object.__setattr__(self, "details", freeze_details(self.details))


@dataclass(frozen=True)
class Report:
    """
    Reporte global: categoría → findings, en el orden de CATEGORY_ORDER.
    Se construye una vez por invocación (plancheck.aggregator.aggregate).
    """
    plan_id: str
    sections: Tuple[Tuple[Category, Tuple[Finding, ...]], ...]

    @property
    def categories(self) -> List[Category]:
        return [cat for cat, _ in self.sections]

    def findings(self, category: Category) -> Tuple[Finding, ...]:
        for cat, items in self.sections:
            if cat == category:
                return items
        return ()

    @property
    def by_category(self) -> Dict[Category, Tuple[Finding, ...]]:
        return dict(self.sections)

    @property
    def all_findings(self) -> List[Finding]:
        return [f for _, items in self.sections for f in items]

    @property
    def num_findings(self) -> int:
        return len(self.all_findings)

    @property
    def num_critical(self) -> int:
        return sum(1 for f in self.all_findings if f.severity == Severity.CRITICAL)

    @property
    def num_warnings(self) -> int:
        return sum(1 for f in self.all_findings if f.severity == Severity.WARNING)

    @property
    def highest_severity(self) -> Severity:
        worst = Severity.INFO
        for f in self.all_findings:
            if f.severity.rank > worst.rank:
                worst = f.severity
        return worst
