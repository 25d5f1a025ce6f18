"""Tests for configuration loading."""

import pytest
import yaml

from chatloop.config import ChatloopConfig, load_config


@pytest.fixture
def clean_env(monkeypatch):
    import chatloop.config as config_mod

    for var in config_mod._ENV_MAP:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


def _write(tmp_path, data) -> str:
    path = tmp_path / "chatloop.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestDefaults:
    def test_defaults(self, clean_env):
        cfg = load_config(None)
        assert cfg.orchestrator.streaming is True
        assert cfg.orchestrator.max_rounds == 20
        assert cfg.orchestrator.on_bad_arguments == "drop"
        assert cfg.stream.fixed_tool_slots is True
        assert cfg.plugins.enabled is False

    def test_missing_file_uses_defaults(self, clean_env, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg.llm.model == "gpt-4o"

    def test_to_dict_hides_overrides(self):
        d = ChatloopConfig().to_dict()
        assert "_overrides" not in d
        assert d["store"]["db_path"].endswith("messages.db")


class TestLayering:
    def test_file_values(self, clean_env, tmp_path):
        path = _write(tmp_path, {
            "llm": {"model": "local-model", "api_base": "http://localhost:8080/v1"},
            "orchestrator": {"streaming": False, "on_bad_arguments": "report"},
            "tools": {"disabled": ["getCurrentWeather"]},
            "unknown_section": {"x": 1},
        })
        cfg = load_config(path)
        assert cfg.llm.model == "local-model"
        assert cfg.llm.api_base == "http://localhost:8080/v1"
        assert cfg.orchestrator.streaming is False
        assert cfg.orchestrator.on_bad_arguments == "report"
        assert cfg.tools.disabled == ["getCurrentWeather"]

    def test_unknown_keys_ignored(self, clean_env, tmp_path):
        path = _write(tmp_path, {"llm": {"model": "m", "temperature": 0.2}})
        assert load_config(path).llm.model == "m"

    def test_profile_overlay(self, clean_env, tmp_path):
        path = _write(tmp_path, {
            "llm": {"model": "base"},
            "profiles": {"local": {"llm": {"model": "tiny"}}},
        })
        assert load_config(path).llm.model == "base"
        assert load_config(path, profile="local").llm.model == "tiny"

    def test_env_beats_file(self, clean_env, tmp_path):
        path = _write(tmp_path, {"orchestrator": {"max_rounds": 5}})
        clean_env.setenv("CHATLOOP_ORCH_MAX_ROUNDS", "7")
        clean_env.setenv("CHATLOOP_ORCH_STREAMING", "no")
        clean_env.setenv("CHATLOOP_TOOLS_BUILTIN", "getAnswerToUniverse, getCurrentWeather")
        cfg = load_config(path)
        assert cfg.orchestrator.max_rounds == 7
        assert cfg.orchestrator.streaming is False
        assert cfg.tools.builtin == ["getAnswerToUniverse", "getCurrentWeather"]

    def test_cli_beats_env(self, clean_env):
        clean_env.setenv("CHATLOOP_LLM_MODEL", "from-env")
        cfg = load_config(None, cli_overrides={"llm.model": "from-cli"})
        assert cfg.llm.model == "from-cli"

    def test_session_override(self):
        cfg = ChatloopConfig()
        cfg.set_override("stream.fixed_tool_slots", False)
        assert cfg.stream.fixed_tool_slots is False
        assert cfg.get_override("stream.fixed_tool_slots") is False
        assert cfg.get_override("llm.model") is None


class TestValidation:
    def test_bad_policy_rejected(self, clean_env, tmp_path):
        path = _write(tmp_path, {"orchestrator": {"on_bad_arguments": "ignore"}})
        with pytest.raises(ValueError, match="on_bad_arguments"):
            load_config(path)

    def test_negative_max_rounds_rejected(self, clean_env):
        clean_env.setenv("CHATLOOP_ORCH_MAX_ROUNDS", "-1")
        with pytest.raises(ValueError, match="max_rounds"):
            load_config(None)

    def test_unparseable_env_value(self, clean_env):
        clean_env.setenv("CHATLOOP_TOOLS_TIMEOUT", "soon")
        with pytest.raises(ValueError, match="CHATLOOP_TOOLS_TIMEOUT"):
            load_config(None)

    def test_unknown_profile(self, clean_env, tmp_path):
        path = _write(tmp_path, {"profiles": {"local": {}}})
        with pytest.raises(ValueError, match="Unknown profile"):
            load_config(path, profile="remote")

    def test_unknown_override_key(self, clean_env):
        with pytest.raises(ValueError, match="Unknown config key"):
            load_config(None, cli_overrides={"llm.temperature": 0.5})


class TestApiKey:
    def test_resolved_from_named_env_var(self, clean_env):
        clean_env.setenv("MY_LLM_KEY", "sk-123")
        cfg = load_config(None, cli_overrides={"llm.api_key_env": "MY_LLM_KEY"})
        assert cfg.llm.resolve_api_key() == "sk-123"

    def test_missing_key_is_empty(self, clean_env):
        clean_env.delenv("NO_SUCH_KEY_VAR", raising=False)
        cfg = load_config(None, cli_overrides={"llm.api_key_env": "NO_SUCH_KEY_VAR"})
        assert cfg.llm.resolve_api_key() == ""
