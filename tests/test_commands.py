import json

import pytest

from hub.commands import CommandTemplates, load_templates
from hub.models import SystemDescriptor, SystemType


def _descriptor(system_type):
    return SystemDescriptor(id="app", name="App", path="/srv/app", type=system_type)


def test_default_commands_by_type():
    templates = CommandTemplates()

    assert templates.build_command(_descriptor(SystemType.REACT)) == "npm run build"
    assert "No build script" in templates.build_command(_descriptor(SystemType.NODE_SERVICE))
    assert templates.deploy_command(_descriptor(SystemType.FULL_STACK), "staging") == "npm run deploy"


def test_baas_deploy_targets_environment():
    templates = CommandTemplates()
    site = _descriptor(SystemType.REACT_BAAS)

    assert templates.deploy_command(site, "production") == "firebase deploy"
    assert templates.deploy_command(site, "staging") == "firebase deploy --only hosting:staging"
    assert templates.deploy_command(site, "qa env") == "firebase deploy --only hosting:'qa env'"


def test_rollback_checks_out_quoted_version():
    command = CommandTemplates().rollback_command(_descriptor(SystemType.FULL_STACK), "v1 && rm", "production")

    assert command == "git checkout 'v1 && rm' && npm run deploy"


def test_overrides_accept_aliases(tmp_path):
    overrides = tmp_path / "commands.json"
    overrides.write_text(
        json.dumps({"build": {"node-express": "make"}, "rollback": "git switch --detach {version}"}),
        encoding="utf-8",
    )

    templates = load_templates(overrides)

    assert templates.build_command(_descriptor(SystemType.NODE_SERVICE)) == "make"
    assert templates.rollback_command(_descriptor(SystemType.OTHER), "v2", "production").startswith(
        "git switch --detach v2 && "
    )


def test_invalid_overrides_are_rejected(tmp_path):
    with pytest.raises(ValueError):
        CommandTemplates().apply_overrides({"build": ["npm run build"]})
    with pytest.raises(ValueError):
        CommandTemplates().apply_overrides({"deploy": {"cobol": "deploy"}})

    not_an_object = tmp_path / "commands.json"
    not_an_object.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_templates(not_an_object)


def test_no_overrides_path_gives_defaults():
    assert load_templates(None).rollback == "git checkout {version}"
