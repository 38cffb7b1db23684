import json

from conftest import make_project
from hub.analyzer import analyze, classify, detect_technologies, inspect_path, read_deploy_targets, suggest_type
from hub.models import SystemStatus, SystemType


def test_missing_path_analyzes_to_error(tmp_path):
    analysis = analyze(tmp_path / "gone")

    assert analysis.status == SystemStatus.ERROR
    assert "does not exist" in analysis.error_message


def test_manifest_without_dependencies_needs_setup(tmp_path):
    root = make_project(tmp_path / "demo", manifest={"name": "demo"})

    analysis = analyze(root)

    assert analysis.status == SystemStatus.NEEDS_SETUP
    assert analysis.technologies == []
    assert analysis.version == "1.0.0"
    assert analysis.structure["has_manifest"] is True
    assert analysis.structure["has_dependencies"] is False


def test_installed_project_is_ready_without_src(tmp_path):
    root = make_project(tmp_path / "svc", manifest={"name": "svc", "version": "2.1.0"}, installed=True)

    analysis = analyze(root)

    assert analysis.status == SystemStatus.READY
    assert analysis.version == "2.1.0"


def test_directory_without_manifest_needs_setup(tmp_path):
    root = make_project(tmp_path / "empty")

    assert analyze(root).status == SystemStatus.NEEDS_SETUP


def test_malformed_manifest_is_error_not_exception(tmp_path):
    root = make_project(tmp_path / "broken")
    (root / "package.json").write_text("{not json", encoding="utf-8")

    analysis = analyze(root)

    assert analysis.status == SystemStatus.ERROR
    assert "package.json" in analysis.error_message


def test_technologies_follow_declared_dependencies(tmp_path):
    manifest = {
        "dependencies": {"react": "^18", "firebase": "^10", "axios": "^1"},
        "devDependencies": {"typescript": "^5"},
    }

    assert detect_technologies(manifest) == ["React", "Firebase", "TypeScript", "Axios"]


def test_deploy_targets_and_build_output(tmp_path):
    root = make_project(tmp_path / "site", manifest={"name": "site"}, installed=True, extra=("build",))
    (root / "firebase.json").write_text("{}", encoding="utf-8")
    (root / ".firebaserc").write_text(
        json.dumps({"projects": {"default": "site-prod", "staging": "site-stg"}}), encoding="utf-8"
    )

    analysis = analyze(root)

    assert analysis.deploy_capable is True
    assert analysis.built is True
    assert analysis.environments == ["default", "staging"]
    assert read_deploy_targets(root) == {"default": "site-prod", "staging": "site-stg"}


def test_read_deploy_targets_tolerates_bad_file(tmp_path):
    (tmp_path / ".firebaserc").write_text("[]", encoding="utf-8")

    assert read_deploy_targets(tmp_path) == {}


def test_classify_requires_installed_dependencies():
    assert classify({"has_manifest": True, "has_dependencies": False}) == SystemStatus.NEEDS_SETUP
    assert classify({"has_manifest": True, "has_dependencies": True}) == SystemStatus.READY


def test_suggest_type(tmp_path):
    full = make_project(tmp_path / "full", extra=("src", "server"))

    assert suggest_type(tmp_path, ["React"]) == SystemType.REACT
    assert suggest_type(tmp_path, ["React", "Firebase"]) == SystemType.REACT_BAAS
    assert suggest_type(tmp_path, ["Express"]) == SystemType.NODE_SERVICE
    assert suggest_type(full, []) == SystemType.FULL_STACK
    assert suggest_type(tmp_path, []) == SystemType.OTHER


def test_inspect_path_prefills_type(tmp_path):
    root = make_project(tmp_path / "api", manifest={"dependencies": {"express": "^4"}})

    info = inspect_path(root)

    assert info["exists"] is True
    assert info["has_manifest"] is True
    assert info["suggested_type"] == "node-service"
    assert info["technologies"] == ["Express"]
    assert info["deploy_project"] is None
