import json
import logging

import plancheck.config as config_module
from plancheck import evaluate_plan
from plancheck.checks.beams import analyze_beams
from plancheck.checks.isocenter import couch_requirement
from plancheck.config import (
    BEAM_CONFIG,
    CHECKLISTS,
    build_effective_config,
    configure_logging,
    get_beam_config,
    get_checklist,
    get_coverage_config,
    get_logging_config,
    pinned_config,
    set_overrides_path,
)
from plancheck.config_overrides import DEFAULT_OVERRIDES, load_overrides, save_overrides
from plancore.snapshot import Category

from conftest import make_beam


def test_defaults_without_overrides_file():
    cfg = get_beam_config()
    assert cfg["fff_mu_limit"] == 1400.0
    cfg["fff_mu_limit"] = 1.0
    # los getters devuelven copias
    assert BEAM_CONFIG["fff_mu_limit"] == 1400.0
    assert get_beam_config()["fff_mu_limit"] == 1400.0


def test_overrides_are_applied(tmp_path, make_plan):
    path = tmp_path / "overrides.json"
    save_overrides({
        "thresholds": {"BEAM": {"fff_mu_limit": 1000.0}, "UNKNOWN": {"x": 1}},
        "checklists": {"BOLUS": ["Custom bolus item"], "NOT_A_KEY": ["ignored"]},
        "couch_requirements": {"linac3": "Custom Couch"},
    }, path)
    set_overrides_path(path)

    assert get_beam_config()["fff_mu_limit"] == 1000.0
    assert get_checklist("BOLUS") == ["Custom bolus item"]
    assert get_checklist("NOT_A_KEY") == []
    assert couch_requirement("Linac3") == "Custom Couch"
    assert "UNKNOWN" not in build_effective_config()["thresholds"]

    res = analyze_beams(make_plan(beams=(make_beam("ARC1", energy="6X-FFF", mu=1200.0),)))
    assert res.fff_over_limit == (("ARC1", 1200.0),)

    # Sin overrides vuelven los defaults
    assert build_effective_config(use_overrides=False)["thresholds"]["BEAM"]["fff_mu_limit"] == 1400.0


def test_broken_overrides_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "overrides.json"
    path.write_text("{broken", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="plancheck.config"):
        assert load_overrides(path) == DEFAULT_OVERRIDES
    assert "Ignoring unreadable overrides file" in caplog.text

    set_overrides_path(path)
    assert get_coverage_config()["excellent_min"] == 95.0


def test_non_object_overrides_are_ignored(tmp_path):
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    assert load_overrides(path) == DEFAULT_OVERRIDES

    path.write_text(json.dumps({"thresholds": "nope"}), encoding="utf-8")
    assert load_overrides(path)["thresholds"] == {}


def test_checklist_placeholders():
    items = get_checklist("STATUS_MOTION", ct_type="4DCT")
    assert items[0] == "Add 4DCT note to plan documents"
    assert "{ct_type}" in CHECKLISTS["STATUS_MOTION"][0]


def test_configure_logging_sets_levels():
    logger = logging.getLogger("plancheck")
    saved = (logger.level, logger.propagate, list(logger.handlers))
    try:
        configure_logging("DEBUG")
        assert logger.level == logging.DEBUG
        assert not logger.propagate
        assert get_logging_config()["loggers"]["plancheck"]["level"] == "INFO"
    finally:
        logger.setLevel(saved[0])
        logger.propagate = saved[1]
        logger.handlers[:] = saved[2]


def test_pinned_config_ignores_file_edits(tmp_path):
    path = tmp_path / "overrides.json"
    save_overrides({"thresholds": {"BEAM": {"fff_mu_limit": 1000.0}}}, path)
    set_overrides_path(path)

    with pinned_config():
        save_overrides({"thresholds": {"BEAM": {"fff_mu_limit": 900.0}}}, path)
        assert get_beam_config()["fff_mu_limit"] == 1000.0
        get_beam_config()["fff_mu_limit"] = 1.0
        assert get_beam_config()["fff_mu_limit"] == 1000.0

    assert get_beam_config()["fff_mu_limit"] == 900.0


def test_evaluation_reads_overrides_once(tmp_path, make_plan, monkeypatch):
    path = tmp_path / "overrides.json"
    save_overrides({"thresholds": {"BEAM": {"fff_mu_limit": 1000.0}}}, path)
    set_overrides_path(path)

    calls = []
    real_load = config_module.load_overrides

    def counting_load(p=None):
        calls.append(p)
        return real_load(p)

    monkeypatch.setattr(config_module, "load_overrides", counting_load)
    report = evaluate_plan(make_plan(beams=(make_beam("ARC1", energy="6X-FFF", mu=1200.0),)))

    assert calls == [path]
    assert any(f.name == "MU limit" for f in report.findings(Category.BEAM))
