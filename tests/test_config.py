"""Tests for iotdash.config — schema defaults, file loading and env overrides."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from iotdash.config import Config, load_config, save_config
from iotdash.config.schema import AutomationConfig


class TestSchema:
    def test_defaults(self):
        config = Config()
        assert config.automation.cooldown_seconds == 60
        assert config.automation.tick_interval_seconds == 60.0
        assert config.automation.history_limit == 50
        assert config.commands.udp_port == 4210
        assert config.commands.grace_seconds == 0.5
        assert config.storage.automations_key == "automations"
        assert config.storage.history_key == "automation_history"

    def test_camel_and_snake_case(self):
        assert AutomationConfig.model_validate({"cooldownSeconds": 30}).cooldown_seconds == 30
        assert AutomationConfig.model_validate({"cooldown_seconds": 30}).cooldown_seconds == 30

    @pytest.mark.parametrize("field,value", [
        ("cooldownSeconds", -1),
        ("tickIntervalSeconds", 0),
        ("historyLimit", 0),
    ])
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            AutomationConfig.model_validate({field: value})

    def test_data_path_expands_home(self):
        config = Config.model_validate({"storage": {"dataDir": "~/iot"}})
        assert "~" not in str(config.data_path)

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("IOTDASH_AUTOMATION__COOLDOWN_SECONDS", "15")
        assert Config().automation.cooldown_seconds == 15


class TestLoader:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.json")
        assert config.automation.cooldown_seconds == 60

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "config.json"
        config = Config()
        config.automation.history_limit = 10
        config.commands.udp_port = 5000
        save_config(config, path)

        raw = json.loads(path.read_text())
        assert raw["automation"]["historyLimit"] == 10

        loaded = load_config(path)
        assert loaded.automation.history_limit == 10
        assert loaded.commands.udp_port == 5000

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{ nope")
        assert load_config(path).automation.history_limit == 50

    def test_invalid_values_give_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"automation": {"historyLimit": -3}}))
        assert load_config(path).automation.history_limit == 50
