import json

import pytest

from hub.config import HubConfig, load_seeds, parse_args


def test_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("HUB_WS_PORT", "9100")
    monkeypatch.setenv("HUB_WATCH", "yes")
    monkeypatch.setenv("HUB_HISTORY_LIMIT", "25")

    config = HubConfig.from_args(parse_args([]))

    assert config.ws_port == 9100
    assert config.watch is True
    assert config.history_limit == 25
    assert config.log_level == "INFO"


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("HUB_WATCH", "1")

    config = HubConfig.from_args(parse_args(["--no-watch", "--http-port", "9200", "--verbose"]))

    assert config.watch is False
    assert config.http_port == 9200
    assert config.log_level == "DEBUG"


def test_load_seeds(tmp_path):
    seeds = tmp_path / "seeds.json"
    seeds.write_text(json.dumps([{"id": "app", "name": "App", "path": "/srv/app", "type": "react"}]))

    assert HubConfig(seeds_path=str(seeds)).load_seeds()[0]["id"] == "app"
    assert load_seeds(None) == []

    seeds.write_text(json.dumps({"id": "app"}))
    with pytest.raises(ValueError):
        load_seeds(seeds)
