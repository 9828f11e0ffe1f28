import pytest

from plancheck.checks.beams import CCW, CW, STATIC, analyze_beams, beam_findings, gantry_pattern
from plancheck.checks.structures import analyze_structures, structure_findings
from plancheck.config import get_checklist
from plancore.snapshot import Beam, Bounds, ImageInfo, Severity

from conftest import make_beam, make_setup_beam, make_structure


def _by_name(findings, name):
    return [f for f in findings if f.name == name]


# ------------------------------------------------------------
# Beams
# ------------------------------------------------------------

@pytest.mark.parametrize("start, end, pattern", [
    (90.0, 90.5, STATIC),
    (181.0, 179.0, CCW),
    (179.0, 181.0, CW),
    (30.0, 330.0, CCW),
    (330.0, 30.0, CW),
])
def test_gantry_pattern(start, end, pattern):
    assert gantry_pattern(make_beam("B", start=start, end=end)).pattern == pattern


def test_gantry_pattern_without_control_points():
    beam = Beam(id="B", energy_mode="6X")
    res = gantry_pattern(beam)
    assert res.pattern is None
    assert res.describe() == "B: no control points"


def test_clean_beam_set(make_plan):
    res = analyze_beams(make_plan())
    assert res.treatment_count == 2
    assert res.setup_count == 1
    assert res.total_mu == 600.0
    assert res.units == (("LINAC1", 2),)

    findings = beam_findings(res)
    assert not any(f.severity == Severity.CRITICAL for f in findings)
    assert _by_name(findings, "Bolus")[0].checklist_items == tuple(get_checklist("NO_BOLUS"))
    assert _by_name(findings, "Setup beams")[0].message == "1 setup beam(s)"


def test_no_treatment_beams_is_critical(make_plan):
    findings = beam_findings(analyze_beams(make_plan(beams=())))
    assert _by_name(findings, "Beams")[0].severity == Severity.CRITICAL
    assert _by_name(findings, "Setup beams")[0].severity == Severity.WARNING


def test_multiple_units_and_bolus(make_plan):
    beams = (
        make_beam("ARC1", boluses=("Bolus_5mm",)),
        make_beam("ARC2", treatment_unit="LINAC2", boluses=("Bolus_5mm",)),
    )
    findings = beam_findings(analyze_beams(make_plan(beams=beams)))
    units = _by_name(findings, "Treatment units")[0]
    assert units.severity == Severity.WARNING
    assert "LINAC2 QA current and complete" in units.checklist_items
    bolus = _by_name(findings, "Bolus")[0]
    assert bolus.severity == Severity.WARNING
    assert bolus.message == "Bolus detected in 2 of 2 treatment beams: Bolus_5mm"


def test_fff_mu_limit(make_plan):
    beams = (
        make_beam("ARC1", energy="6X-FFF", mu=1500.0),
        make_beam("ARC2", energy="6X-FFF", mu=1400.0),
        make_beam("ARC3", energy="10X-FFF", mu=2500.0),
    )
    res = analyze_beams(make_plan(beams=beams))
    assert res.fff_over_limit == (("ARC1", 1500.0),)
    warning = _by_name(beam_findings(res), "MU limit")[0]
    assert warning.message == "ARC1: 1500.0 MU (>1400 MU limit for 6X-FFF)"


def test_energy_groups(make_plan):
    beams = (make_beam("F1", energy="6X", mu=100.0), make_beam("F2", energy="10X", mu=50.0),
             make_beam("F3", energy="6X", mu=120.0))
    res = analyze_beams(make_plan(beams=beams))
    assert [(g.energy, g.beam_count, g.monitor_units) for g in res.energy_groups] == [
        ("6X", 2, 220.0),
        ("10X", 1, 50.0),
    ]


def test_missing_drr_and_setup_info(make_plan):
    beams = (make_beam("ARC1", reference_image_id=None), make_setup_beam(drr=None))
    findings = beam_findings(analyze_beams(make_plan(beams=beams)))
    assert _by_name(findings, "DRR")[0].message == "Treatment beams without DRR: ARC1"
    setup = _by_name(findings, "Setup beam")[0]
    assert setup.severity == Severity.WARNING
    assert "jaws 20.0 x 24.0 cm" in setup.message


# ------------------------------------------------------------
# Estructuras
# ------------------------------------------------------------

def test_clean_structure_set(make_plan):
    res = analyze_structures(make_plan())
    assert res.total == 3
    assert res.counts_by_role == (("PTV", 1), ("ORGAN", 1), ("EXTERNAL", 1))
    assert res.ptv_lengths_cm == (("PTV_5400", 8.0),)
    assert res.key_oars == ("SpinalCord",)

    findings = structure_findings(res)
    assert not any(f.severity != Severity.INFO for f in findings)


def test_structure_warnings(make_plan):
    structures = (
        make_structure("PTV_5400", "PTV", bounds=Bounds((0.0, 0.0, -120.0), (10.0, 10.0, 130.0))),
        make_structure("zArtifact", "", is_empty=False),
        make_structure("Bladder", "ORGAN", is_empty=True),
    )
    image = ImageInfo(id="CT1", user_origin_mm=(0.0, 0.0, 0.0), size=(512, 512, 420))
    findings = structure_findings(analyze_structures(make_plan(structures=structures, image=image)))

    slices = _by_name(findings, "CT slices")[0]
    assert slices.severity == Severity.WARNING
    assert slices.message == "CT has 420 slices (> 399)"

    overrides = _by_name(findings, "Density overrides")[0]
    assert overrides.severity == Severity.WARNING
    assert list(overrides.checklist_items) == get_checklist("DENSITY_OVERRIDES")

    assert _by_name(findings, "Empty structures")[0].message == "Empty structures: Bladder"

    length = _by_name(findings, "PTV length")[0]
    assert length.severity == Severity.WARNING
    assert "25.0 cm" in length.message
    assert "not compatible with LINAC2" in length.message
