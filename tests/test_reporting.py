import json

import pytest

from plancheck import evaluate_plan
from plancheck.reporting import (
    filter_findings,
    finding_to_dict,
    pending_checklist,
    report_to_dict,
    report_to_json,
)
from plancore.snapshot import Category, Finding, Prescription, Severity


def test_finding_to_dict_fields():
    f = Finding(Category.BEAM, Severity.WARNING, "Bolus", "Bolus detected", ("Check bolus",), {"n": 1})
    assert finding_to_dict(f) == {
        "category": "Beam",
        "severity": "Warning",
        "name": "Bolus",
        "message": "Bolus detected",
        "checklistItems": ["Check bolus"],
    }
    assert finding_to_dict(f, include_details=True)["details"] == {"n": 1}


def test_report_to_dict_summary(make_plan):
    plan = make_plan(prescription=Prescription(200.0, 27, 5400.0, normalization_value=0.0))
    report = evaluate_plan(plan)
    data = report_to_dict(report)
    assert data["planId"] == "PROST_VMAT"
    assert [c["category"] for c in data["categories"]] == [c.value for c in Category]
    assert data["summary"]["numWarnings"] == report.num_warnings >= 1
    assert data["summary"]["highestSeverity"] == "Warning"


def test_report_to_json_round_trips(make_plan):
    report = evaluate_plan(make_plan())
    assert json.loads(report_to_json(report, include_details=True))["planId"] == "PROST_VMAT"


def test_filter_findings(make_plan):
    report = evaluate_plan(make_plan(approval_status="PlanningApproved"))
    warnings = filter_findings(report, Severity.WARNING)
    assert warnings
    assert all(f.severity != Severity.INFO for f in warnings)
    status_only = filter_findings(report, categories=[Category.STATUS])
    assert {f.category for f in status_only} == {Category.STATUS}


def test_pending_checklist_is_deduplicated(make_plan):
    items = pending_checklist(evaluate_plan(make_plan()))
    assert len(items) == len(set(items))
    assert "Check BEV for flash and margins" in items


def _shift_finding():
    return Finding(Category.ISOCENTER, Severity.INFO, "Isocenter shift", "no shift",
                   details={"shift_cm": [1.0, 0.0, 0.0]})


def test_findings_are_hashable_with_frozen_details(make_plan):
    f = _shift_finding()
    assert hash(f) == hash(_shift_finding())
    assert f == _shift_finding()
    assert f.details["shift_cm"] == (1.0, 0.0, 0.0)
    with pytest.raises(TypeError):
        f.details["shift_cm"] = [0.0, 0.0, 0.0]
    assert finding_to_dict(f, include_details=True)["details"] == {"shift_cm": [1.0, 0.0, 0.0]}

    report = evaluate_plan(make_plan())
    assert set(report.all_findings)
