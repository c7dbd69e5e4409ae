import json

import pytest

from base_exceptions import TargetDefinitionError
from config_manager import DEFAULT_TARGETS_FILE, AutomationConfig
from filling import StepAction
from targets import FIELD_ACTIONS, load_target_definitions, parse_target_definition


@pytest.fixture
def catalog():
    return load_target_definitions(DEFAULT_TARGETS_FILE)


def test_shipped_catalog_loads(catalog):
    assert "eventim" in catalog
    eventim = catalog["eventim"]
    assert eventim.display_name == "Eventim Light"
    assert eventim.steps[0].action == StepAction.NAVIGATE
    assert eventim.steps[0].value == "https://www.eventim-light.com/fr/login"


def test_every_field_step_has_a_selector_set(catalog):
    for definition in catalog.values():
        for step in definition.steps:
            if step.action in FIELD_ACTIONS:
                assert definition.selectors[step.target_field].candidates, step.name


def test_only_the_last_step_commits(catalog):
    steps = catalog["eventim"].steps
    assert [s.name for s in steps if s.commit] == ["publish_event"]
    assert steps[-1].commit


def test_login_is_checkpointed(catalog):
    submit = next(s for s in catalog["eventim"].steps if s.name == "submit_login")
    assert submit.expect_navigation
    assert submit.checkpoint == "logged_in"


def test_budgets_fit_under_the_execution_ceiling(catalog):
    defaults = AutomationConfig()
    for definition in catalog.values():
        assert definition.budget_ms <= defaults.execution_ceiling_ms - defaults.response_headroom_ms


def minimal(**overrides):
    data = {
        "selectors": {"email": [{"name": "by type", "selector": "input[type=email]"}]},
        "steps": [{"name": "fill_email", "action": "fill", "target_field": "email",
                   "value_from": "credentials.email"}],
    }
    data.update(overrides)
    return data


def test_list_form_selectors_are_accepted():
    definition = parse_target_definition("demo", minimal())
    assert definition.selectors["email"].snapshot == "input"
    assert definition.display_name == "demo"


def test_unknown_action_is_rejected():
    with pytest.raises(TargetDefinitionError, match="unknown action"):
        parse_target_definition("demo", minimal(steps=[{"name": "hover", "action": "hover"}]))


def test_unknown_step_key_is_rejected():
    steps = [{"name": "fill_email", "action": "fill", "target_field": "email", "retries": 3}]
    with pytest.raises(TargetDefinitionError, match="unknown keys"):
        parse_target_definition("demo", minimal(steps=steps))


def test_step_referring_to_unknown_field_is_rejected():
    steps = [{"name": "fill_phone", "action": "fill", "target_field": "phone", "value": "0600"}]
    with pytest.raises(TargetDefinitionError, match="unknown field 'phone'"):
        parse_target_definition("demo", minimal(steps=steps))


def test_unknown_checkpoint_is_rejected():
    steps = [{"name": "fill_email", "action": "fill", "target_field": "email", "value": "a",
              "checkpoint": "logged_in"}]
    with pytest.raises(TargetDefinitionError, match="checkpoint"):
        parse_target_definition("demo", minimal(steps=steps))


def test_field_without_candidates_is_rejected():
    with pytest.raises(TargetDefinitionError, match="no selector candidates"):
        parse_target_definition("demo", minimal(selectors={"email": []}))


def test_catalog_names_are_lower_cased(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text(json.dumps({"targets": {"Demo": minimal()}}), encoding="utf-8")

    definitions = load_target_definitions(str(path))

    assert list(definitions) == ["demo"]
    assert definitions["demo"].name == "demo"


def test_publish_is_confirmed_by_the_site_and_dry_run_by_login(catalog):
    eventim = catalog["eventim"]
    assert eventim.success_check == "published"
    assert eventim.dry_run_check == "logged_in"
    assert {"kind": "element_visible", "value": "publishConfirmation"} in [
        {"kind": c.kind, "value": c.value} for c in eventim.checks["published"]]


def test_unknown_dry_run_check_is_rejected():
    with pytest.raises(TargetDefinitionError, match="dry run check"):
        parse_target_definition("demo", minimal(dry_run_check="logged_in"))
