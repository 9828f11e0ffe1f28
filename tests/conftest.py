from dataclasses import replace
from typing import Callable, Dict, Iterable, Optional, Union

import pytest

from plancore.snapshot import (
    Beam,
    Bounds,
    ControlPoint,
    ImageInfo,
    JawPositions,
    OptimizationObjective,
    PlanSnapshot,
    Prescription,
    Structure,
)
from plancheck.config import set_overrides_path

Value = Union[float, Callable[[float], float]]


class FakeDoseGrid:
    """
    Dose grid de tablas: cada consulta devuelve el valor configurado por
    estructura (constante o función de la dosis). IDs en `fail` lanzan.
    """

    def __init__(
        self,
        max_dose_cgy: float = 5600.0,
        relative: Optional[Dict[str, Value]] = None,
        absolute: Optional[Dict[str, Value]] = None,
        maxes: Optional[Dict[str, float]] = None,
        means: Optional[Dict[str, float]] = None,
        fail: Iterable[str] = (),
    ):
        self.max_dose_cgy = max_dose_cgy
        self.resolution_mm = (2.5, 2.5, 2.5)
        self.size = (128, 128, 90)
        self.relative = relative or {}
        self.absolute = absolute or {}
        self.maxes = maxes or {}
        self.means = means or {}
        self.fail = set(fail)
        self.volume_calls = []

    def _check(self, structure):
        if structure.id in self.fail:
            raise RuntimeError(f"grid failure for {structure.id}")

    def volume_at_dose(self, structure, dose_cgy, relative=True):
        self._check(structure)
        self.volume_calls.append((structure.id, dose_cgy, relative))
        table = self.relative if relative else self.absolute
        value = table.get(structure.id, 0.0)
        return value(dose_cgy) if callable(value) else float(value)

    def dose_at_volume(self, structure, volume_percent):
        self._check(structure)
        return self.maxes.get(structure.id, 0.0)

    def mean_dose(self, structure):
        self._check(structure)
        return self.means.get(structure.id, 0.0)


def always(value: bool):
    return lambda point: value


def make_structure(sid: str, dicom_type: str = "", inside: Optional[bool] = True, **kwargs) -> Structure:
    predicate = always(inside) if inside is not None else None
    return Structure(id=sid, dicom_type=dicom_type, point_predicate=predicate, **kwargs)


def make_beam(bid: str, mlc: str = "VMAT", energy: str = "6X", mu: float = 300.0,
              start: float = 181.0, end: float = 179.0, **kwargs) -> Beam:
    kwargs.setdefault("treatment_unit", "LINAC1")
    kwargs.setdefault("reference_image_id", f"DRR_{bid}")
    return Beam(
        id=bid,
        energy_mode=energy,
        mlc_plan_type=mlc,
        monitor_units=mu,
        control_points=(ControlPoint(gantry_angle=start), ControlPoint(gantry_angle=end)),
        **kwargs,
    )


def make_setup_beam(bid: str = "CBCT", drr: Optional[str] = "DRR_SETUP") -> Beam:
    return Beam(
        id=bid,
        energy_mode="6X",
        mlc_plan_type="Static",
        treatment_unit="LINAC1",
        is_setup_field=True,
        reference_image_id=drr,
        control_points=(
            ControlPoint(gantry_angle=0.0, jaw_positions=JawPositions(-100.0, 100.0, -120.0, 120.0)),
        ),
    )


@pytest.fixture(autouse=True)
def isolated_overrides(tmp_path):
    set_overrides_path(tmp_path / "no_overrides.json")
    yield
    set_overrides_path(None)


@pytest.fixture
def make_plan():
    """
    Plan base "limpio": HFS, PTV_5400 + BODY + SpinalCord, dos arcos VMAT
    en el user origin, Rx 200 cGy x 27, aprobado para tratamiento.
    """

    def _make(**overrides) -> PlanSnapshot:
        grid = FakeDoseGrid(
            max_dose_cgy=5700.0,
            relative={"PTV_5400": 97.0},
            absolute={"BODY": 0.5, "PTV_5400": 0.5},
            maxes={"PTV_5400": 5700.0, "BODY": 5700.0, "SpinalCord": 3500.0},
            means={"PTV_5400": 5450.0, "BODY": 800.0, "SpinalCord": 1200.0},
        )
        plan = PlanSnapshot(
            plan_id="PROST_VMAT",
            plan_name="Prostate",
            course_id="C1",
            approval_status="TreatmentApproved",
            treatment_orientation="HeadFirstSupine",
            prescription=Prescription(
                dose_per_fraction_cgy=200.0,
                number_of_fractions=27,
                total_dose_cgy=5400.0,
                normalization_value=100.0,
                normalization_method="100% covers 95% of target",
            ),
            beams=(make_beam("ARC1"), make_beam("ARC2", start=179.0, end=181.0), make_setup_beam()),
            structures=(
                make_structure("PTV_5400", "PTV", volume_cc=120.0,
                               bounds=Bounds((-30.0, -30.0, -40.0), (30.0, 30.0, 40.0))),
                make_structure("BODY", "EXTERNAL", volume_cc=20000.0),
                make_structure("SpinalCord", "ORGAN", inside=False),
            ),
            image=ImageInfo(id="CT_PROST", user_origin_mm=(0.0, 0.0, 0.0),
                            size=(512, 512, 150), resolution_mm=(1.0, 1.0, 2.5)),
            dose_grid=grid,
            optimization_objectives=(
                OptimizationObjective("PTV_5400", 1.0, "PointObjective"),
                OptimizationObjective("SpinalCord", 1.0, "PointObjective"),
            ),
            photon_model="AAA_15606",
        )
        return replace(plan, **overrides) if overrides else plan

    return _make
