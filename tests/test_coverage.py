import pytest

from plancheck.checks.coverage import (
    ACCEPTABLE,
    EXCELLENT,
    HOT_IN_BODY,
    HOT_IN_OTHER,
    HOT_IN_PTV,
    MULTI_TARGET,
    NO_OBJECTIVES,
    NO_SETUP,
    POOR,
    SIB_CONCERN,
    SINGLE_TARGET,
    SINGLE_TARGET_LOWER,
    PrescriptionSource,
    analyze_all_targets,
    analyze_dose_summary,
    analyze_hotspots,
    analyze_optimization,
    analyze_oars,
    analyze_target,
    coverage_findings,
    coverage_tier,
    dose_summary_findings,
    hotspot_findings,
    optimization_findings,
    oar_findings,
    resolve_target_prescription,
)
from plancheck.config import get_checklist, get_coverage_config
from plancore.naming import DosePattern
from plancore.snapshot import OptimizationObjective, Prescription, Severity

from conftest import FakeDoseGrid, make_structure


# ------------------------------------------------------------
# Prescripción por target
# ------------------------------------------------------------

def test_prescription_from_target_name(make_plan):
    plan = make_plan()
    rx = resolve_target_prescription(make_structure("PTV5400", "PTV"), plan, plan.dose_grid)
    assert rx.dose_cgy == 5400.0
    assert rx.source == PrescriptionSource.NAME
    assert rx.dose_pattern == DosePattern.FOUR_DIGIT


def test_prescription_falls_back_to_plan_total(make_plan):
    plan = make_plan()
    rx = resolve_target_prescription(make_structure("PTV_high", "PTV"), plan, plan.dose_grid)
    assert rx.dose_cgy == 5400.0
    assert rx.source == PrescriptionSource.PLAN_FALLBACK
    assert not rx.low_confidence


def test_prescription_mean_estimate_is_low_confidence(make_plan):
    grid = FakeDoseGrid(means={"CTV_high": 6000.0})
    plan = make_plan(prescription=Prescription(), dose_grid=grid)
    rx = resolve_target_prescription(make_structure("CTV_high", "CTV"), plan, grid)
    assert rx.source == PrescriptionSource.MEAN_ESTIMATE
    assert rx.dose_cgy == pytest.approx(6300.0)
    assert rx.low_confidence


def test_prescription_unresolved(make_plan):
    grid = FakeDoseGrid()
    plan = make_plan(prescription=Prescription(), dose_grid=grid)
    rx = resolve_target_prescription(make_structure("CTV_high", "CTV"), plan, grid)
    assert rx.dose_cgy is None
    assert rx.source == PrescriptionSource.UNRESOLVED


# ------------------------------------------------------------
# Cobertura
# ------------------------------------------------------------

@pytest.mark.parametrize("volume, tier", [(95.0, EXCELLENT), (99.2, EXCELLENT), (92.0, ACCEPTABLE),
                                          (90.0, ACCEPTABLE), (80.0, POOR)])
def test_coverage_tier(volume, tier):
    assert coverage_tier(volume, get_coverage_config()) == tier


@pytest.mark.parametrize("volume, tier, severity", [
    (95.0, EXCELLENT, Severity.INFO),
    (92.0, ACCEPTABLE, Severity.WARNING),
    (80.0, POOR, Severity.CRITICAL),
])
def test_ptv_coverage_severity(make_plan, volume, tier, severity):
    grid = FakeDoseGrid(relative={"PTV_5400": volume})
    plan = make_plan(dose_grid=grid)
    res = analyze_target(plan.ptvs[0], plan, grid)
    assert res.ok
    assert res.tier == tier
    (finding,) = coverage_findings((res,))
    assert finding.severity == severity
    if tier == POOR:
        assert list(finding.checklist_items) == get_checklist("PTV_COVERAGE_POOR")


def test_coverage_queries_threshold_doses(make_plan):
    grid = FakeDoseGrid(relative={"PTV5400": 97.0})
    plan = make_plan(dose_grid=grid, structures=(make_structure("PTV5400", "PTV"),))
    analyze_target(plan.structures[0], plan, grid)
    assert ("PTV5400", pytest.approx(5130.0), True) in grid.volume_calls


def test_non_ptv_targets_use_three_thresholds(make_plan):
    grid = FakeDoseGrid(relative={"CTV_5400": lambda dose: 100.0 if dose < 5300 else 96.0})
    plan = make_plan(dose_grid=grid)
    res = analyze_target(make_structure("CTV_5400", "CTV"), plan, grid)
    assert [level for level, _ in res.thresholds] == [95.0, 98.0, 99.0]
    assert res.threshold_map[95.0] == 100.0
    assert res.threshold_map[99.0] == 96.0
    assert res.tier is None


def test_failure_on_one_target_does_not_stop_siblings(make_plan):
    grid = FakeDoseGrid(relative={"PTV_5400": 97.0, "PTV_6000": 96.0}, fail={"PTV_6000"})
    structures = (
        make_structure("PTV_5400", "PTV"),
        make_structure("PTV_6000", "PTV"),
        make_structure("CTV_6000", "CTV", is_empty=True),
        make_structure("BODY", "EXTERNAL"),
    )
    plan = make_plan(dose_grid=grid, structures=structures)
    results = analyze_all_targets(plan)
    assert [r.structure_id for r in results] == ["PTV_5400", "PTV_6000", "CTV_6000"]
    assert results[0].ok
    assert not results[1].ok
    assert results[2].skipped

    findings = coverage_findings(results)
    assert findings[1].severity == Severity.WARNING
    assert "unable to compute coverage" in findings[1].message
    assert findings[2].severity == Severity.INFO


def test_no_dose_grid_means_no_coverage(make_plan):
    assert analyze_all_targets(make_plan(dose_grid=None)) == ()


# ------------------------------------------------------------
# Hotspots
# ------------------------------------------------------------

def test_hotspot_inside_ptv(make_plan):
    res = analyze_hotspots(make_plan())
    assert res.ok
    assert res.hot_structure_kind == HOT_IN_PTV
    assert res.hot_structure_id == "PTV_5400"
    assert res.body_threshold_cgy == pytest.approx(5778.0)
    assert "PTV_5400" in res.max_location_ids

    findings = hotspot_findings(res)
    assert all(f.severity == Severity.INFO for f in findings)


def test_body_hotspot_over_limit_is_warning(make_plan):
    grid = FakeDoseGrid(max_dose_cgy=6000.0, absolute={"BODY": 3.5, "PTV_5400": 1.0})
    res = analyze_hotspots(make_plan(dose_grid=grid))
    findings = hotspot_findings(res)
    body = [f for f in findings if f.name == "Hotspots"]
    assert body[0].severity == Severity.WARNING
    assert "exceeds 2 cc" in body[0].message


def test_body_hotspot_without_total_dose_is_reported(make_plan):
    res = analyze_hotspots(make_plan(prescription=Prescription(200.0, 27)))
    assert res.ok
    assert res.body_id == "BODY"
    assert res.body_threshold_cgy is None
    body = [f for f in hotspot_findings(res) if f.name == "Hotspots"]
    assert len(body) == 1
    assert body[0].severity == Severity.WARNING
    assert body[0].message == "Body hotspot (107%) not evaluated: plan total dose unavailable"


def test_hotspot_outside_target_is_critical(make_plan):
    grid = FakeDoseGrid(absolute={"SpinalCord": 0.2, "BODY": 0.2})
    res = analyze_hotspots(make_plan(dose_grid=grid))
    assert res.hot_structure_kind == HOT_IN_OTHER
    location = [f for f in hotspot_findings(res) if f.name == "Max dose location"][0]
    assert location.severity == Severity.CRITICAL
    assert "SpinalCord" in location.message


def test_hotspot_only_in_body(make_plan):
    grid = FakeDoseGrid(absolute={"BODY": 0.5})
    res = analyze_hotspots(make_plan(dose_grid=grid))
    assert res.hot_structure_kind == HOT_IN_BODY


def test_hotspot_query_failures_are_reported(make_plan):
    grid = FakeDoseGrid(absolute={"PTV_5400": 1.0}, fail={"SpinalCord"})
    res = analyze_hotspots(make_plan(dose_grid=grid))
    assert res.ok
    assert [sid for sid, _ in res.failures] == ["SpinalCord"]
    messages = [f.message for f in hotspot_findings(res)]
    assert any("SpinalCord: unable to compute hotspot metrics" in m for m in messages)


# ------------------------------------------------------------
# Optimización
# ------------------------------------------------------------

def _objectives(*priorities):
    return tuple(OptimizationObjective(f"S{i}", p) for i, p in enumerate(priorities))


def test_optimization_strategies(make_plan):
    two_ptvs = (make_structure("PTV_5400", "PTV"), make_structure("PTV_6000", "PTV"))

    res = analyze_optimization(make_plan(optimization_objectives=_objectives(1, 50, 150)))
    assert res.strategy == SINGLE_TARGET_LOWER
    assert (res.upper, res.medium, res.low, res.lower) == (1, 1, 1, 2)

    res = analyze_optimization(make_plan(structures=two_ptvs, optimization_objectives=_objectives(1, 80)))
    assert res.strategy == MULTI_TARGET

    res = analyze_optimization(make_plan(structures=two_ptvs, optimization_objectives=_objectives(1, 1)))
    assert res.strategy == SIB_CONCERN

    res = analyze_optimization(make_plan(optimization_objectives=_objectives(1, 1)))
    assert res.strategy == SINGLE_TARGET


def test_multi_ptv_without_objectives_is_critical(make_plan):
    two_ptvs = (make_structure("PTV_5400", "PTV"), make_structure("PTV_6000", "PTV"))
    res = analyze_optimization(make_plan(structures=two_ptvs, optimization_objectives=()))
    assert res.strategy == NO_OBJECTIVES
    (finding,) = optimization_findings(res)
    assert finding.severity == Severity.CRITICAL


def test_missing_optimization_setup(make_plan):
    res = analyze_optimization(make_plan(optimization_objectives=None))
    assert res.strategy == NO_SETUP
    (finding,) = optimization_findings(res)
    assert finding.severity == Severity.WARNING
    assert list(finding.checklist_items) == get_checklist("OPTIMIZATION_MANUAL")


# ------------------------------------------------------------
# Resumen y OARs
# ------------------------------------------------------------

def test_dose_summary(make_plan):
    res = analyze_dose_summary(make_plan())
    findings = dose_summary_findings(res)
    assert "max dose 5700.0 cGy" in findings[0].message
    assert "105.6% of Rx" in findings[0].message
    assert findings[1].severity == Severity.INFO

    res = analyze_dose_summary(make_plan(photon_model=None))
    assert dose_summary_findings(res)[1].severity == Severity.WARNING

    assert analyze_dose_summary(make_plan(dose_grid=None)) is None


def test_oar_statistics(make_plan):
    grid = FakeDoseGrid(maxes={"SpinalCord": 3500.0}, means={"SpinalCord": 1200.0}, fail={"Heart"})
    structures = (
        make_structure("SpinalCord", "ORGAN"),
        make_structure("Heart", "ORGAN"),
        make_structure("Couch", "SUPPORT"),
    )
    results = analyze_oars(make_plan(dose_grid=grid, structures=structures))
    assert [r.structure_id for r in results] == ["SpinalCord", "Heart"]
    findings = oar_findings(results)
    assert findings[0].message == "SpinalCord: max 3500.0 cGy, mean 1200.0 cGy"
    assert findings[1].severity == Severity.WARNING
