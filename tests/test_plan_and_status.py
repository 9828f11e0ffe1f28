from plancheck.checks.plan import analyze_plan_info, plan_info_findings, prescription_checklist
from plancheck.checks.status import analyze_status, signoff_checklist, status_findings
from plancheck.checks.technique import classify_technique
from plancheck.config import get_checklist
from plancore.snapshot import ImageInfo, Prescription, Severity

from conftest import make_beam, make_structure


def _plan_info(plan):
    return analyze_plan_info(plan, classify_technique(plan.beams, plan.plan_identifiers))


def _by_name(findings, name):
    return [f for f in findings if f.name == name]


# ------------------------------------------------------------
# Plan
# ------------------------------------------------------------

def test_clean_plan_information(make_plan):
    info = _plan_info(make_plan())
    assert info.technique == "VMAT"
    assert info.ptv_ids == ("PTV_5400",)
    assert not info.sib_detected
    assert not info.breathing_compensated
    assert info.positioning_alerts == ()

    findings = plan_info_findings(info)
    assert findings[0].message == "Plan PROST_VMAT (Prostate), course C1"
    assert all(f.severity == Severity.INFO for f in findings)


def test_prescription_checklist_lists_plan_values(make_plan):
    items = prescription_checklist(_plan_info(make_plan()))
    assert "Technique: VMAT" in items
    assert "Rx Dose: 5400.0 cGy" in items
    assert "Number of Fractions: 27" in items
    assert "SiB Status: NO - Single target" in items
    assert items[-len(get_checklist("PRESCRIPTION")):] == get_checklist("PRESCRIPTION")


def test_incomplete_prescription_is_warning(make_plan):
    info = _plan_info(make_plan(prescription=Prescription(total_dose_cgy=5400.0)))
    rx = _by_name(plan_info_findings(info), "Prescription")[0]
    assert rx.severity == Severity.WARNING
    assert "incomplete prescription" in rx.message


def test_multiple_ptvs_flag_sib(make_plan):
    structures = (
        make_structure("PTV_5400", "PTV"),
        make_structure("PTV_6000", "PTV"),
        make_structure("BODY", "EXTERNAL"),
    )
    info = _plan_info(make_plan(structures=structures))
    assert info.sib_detected
    sib = _by_name(plan_info_findings(info), "SiB detection")[0]
    assert sib.severity == Severity.WARNING
    assert "possible simultaneous integrated boost" in sib.message
    assert list(sib.checklist_items) == get_checklist("SIB_PLAN")


def test_breathing_management_detected(make_plan):
    info = _plan_info(make_plan(plan_id="LUNG_ABC", image=ImageInfo(id="CT_4D_AVG")))
    assert info.breathing_compensated
    finding = _by_name(plan_info_findings(info), "Breathing motion management")[0]
    assert list(finding.checklist_items) == get_checklist("BREATHING_COMPENSATED")


def test_prone_positioning_is_warning(make_plan):
    info = _plan_info(make_plan(treatment_orientation="HeadFirstProne"))
    finding = _by_name(plan_info_findings(info), "Patient positioning")[0]
    assert finding.severity == Severity.WARNING
    assert "PRONE positioning detected" in finding.message


def test_laterality_indicators(make_plan):
    structures = (make_structure("PTV_5400", "PTV"), make_structure("Lung_L"), make_structure("Lung_R"))
    info = _plan_info(make_plan(plan_id="Breast_L", structures=structures))
    assert info.plan_laterality.value == "Left"
    assert info.lateral_structures == ("Lung_L", "Lung_R")
    assert _by_name(plan_info_findings(info), "Laterality")


# ------------------------------------------------------------
# Status
# ------------------------------------------------------------

def test_approved_ready_plan(make_plan):
    findings = status_findings(analyze_status(make_plan()))
    assert not any(f.severity == Severity.CRITICAL for f in findings)
    assert _by_name(findings, "Approval status")[0].severity == Severity.INFO
    assert _by_name(findings, "DRR completeness")[0].message == "All beams have DRRs"


def test_unapproved_plan_is_warning(make_plan):
    findings = status_findings(analyze_status(make_plan(approval_status="PlanningApproved")))
    approval = _by_name(findings, "Approval status")[0]
    assert approval.severity == Severity.WARNING
    assert "treatment approval pending" in approval.message

    findings = status_findings(analyze_status(make_plan(approval_status="UnApproved")))
    assert _by_name(findings, "Approval status")[0].severity == Severity.WARNING


def test_plan_not_ready(make_plan):
    plan = make_plan(dose_grid=None, beams=(), structures=())
    readiness = _by_name(status_findings(analyze_status(plan)), "Plan readiness")[0]
    assert readiness.severity == Severity.CRITICAL
    assert readiness.message == "Plan not ready: dose not calculated, no treatment beams, no structure set"


def test_normalization_not_set(make_plan):
    plan = make_plan(prescription=Prescription(200.0, 27, 5400.0, normalization_value=0.0))
    finding = _by_name(status_findings(analyze_status(plan)), "Normalization")[0]
    assert finding.severity == Severity.WARNING


def test_missing_drrs(make_plan):
    plan = make_plan(beams=(make_beam("ARC1"), make_beam("ARC2", reference_image_id=None)))
    finding = _by_name(status_findings(analyze_status(plan)), "DRR completeness")[0]
    assert finding.severity == Severity.WARNING
    assert finding.message.startswith("1/2 beams have DRRs")


def test_signoff_checklist_is_conditional(make_plan):
    base = signoff_checklist(analyze_status(make_plan()))
    assert base == get_checklist("STATUS_COMMON")

    plan = make_plan(
        beams=(make_beam("ARC1", boluses=("Bolus_5mm",)),),
        structures=(
            make_structure("PTV_5400", "PTV"),
            make_structure("PTV_6000", "PTV"),
            make_structure("CouchSurface", "SUPPORT"),
        ),
        image=ImageInfo(id="CT_4D", user_origin_mm=(0.0, 0.0, 0.0)),
    )
    items = signoff_checklist(analyze_status(plan))
    for key in ("STATUS_BOLUS", "STATUS_COUCH", "STATUS_SIB"):
        assert all(item in items for item in get_checklist(key))
    assert "Add 4DCT note to Rx" in items
