"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

BAD_ARGUMENTS_DROP = "drop"
BAD_ARGUMENTS_REPORT = "report"
BAD_ARGUMENT_POLICIES = (BAD_ARGUMENTS_DROP, BAD_ARGUMENTS_REPORT)


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    name: str = "openai"
    model: str = "gpt-4o"
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: int = 120
    max_retries: int = 2

    def resolve_api_key(self) -> str:
        """Read the key from ``api_key_env``; empty for unauthenticated endpoints."""
        if not self.api_key_env:
            return ""
        return os.environ.get(self.api_key_env, "")


@dataclass
class OrchestratorConfig:
    streaming: bool = True
    max_rounds: int = 20          # 0 = unlimited
    on_bad_arguments: str = BAD_ARGUMENTS_DROP
    system_prompt: str = ""


@dataclass
class StreamConfig:
    # False lets the slot list grow past the size announced by the first
    # tool-call fragment.
    fixed_tool_slots: bool = True


@dataclass
class ToolsConfig:
    builtin: list[str] = field(default_factory=list)   # empty = all built-ins
    disabled: list[str] = field(default_factory=list)
    timeout_seconds: float = 30.0


@dataclass
class PluginsConfig:
    enabled: bool = False
    allow_distributions: list[str] = field(default_factory=list)
    allow_tools: list[str] = field(default_factory=list)


@dataclass
class StoreConfig:
    db_path: str = "~/.chatloop/messages.db"


_SECTIONS: dict[str, type] = {
    "llm": LLMConfig,
    "orchestrator": OrchestratorConfig,
    "stream": StreamConfig,
    "tools": ToolsConfig,
    "plugins": PluginsConfig,
    "store": StoreConfig,
}


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ChatloopConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'llm.model')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d

    def validate(self) -> None:
        """Raise ``ValueError`` for settings no component can act on."""
        orch = self.orchestrator
        if orch.on_bad_arguments not in BAD_ARGUMENT_POLICIES:
            raise ValueError(
                f"orchestrator.on_bad_arguments must be one of {BAD_ARGUMENT_POLICIES}, "
                f"got {orch.on_bad_arguments!r}"
            )
        if orch.max_rounds < 0:
            raise ValueError("orchestrator.max_rounds must be >= 0")
        if self.llm.max_retries < 0:
            raise ValueError("llm.max_retries must be >= 0")
        if self.llm.timeout_seconds <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")
        if self.tools.timeout_seconds <= 0:
            raise ValueError("tools.timeout_seconds must be > 0")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    section, _, name = dotpath.rpartition(".")
    for part in filter(None, section.split(".")):
        obj = getattr(obj, part)
    if not hasattr(obj, name):
        raise ValueError(f"Unknown config key: {dotpath}")
    setattr(obj, name, value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if isinstance(merged.get(k), dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(env_var: str, value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.strip().lower() in ("1", "true", "yes", "on")
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    try:
        return target_type(value)
    except ValueError:
        raise ValueError(
            f"{env_var}={value!r} is not a valid {target_type.__name__}"
        ) from None


def _build_section(cls: type, raw: dict | None) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in valid_fields})


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "CHATLOOP_LLM_NAME":              ("llm.name", str),
    "CHATLOOP_LLM_MODEL":             ("llm.model", str),
    "CHATLOOP_LLM_API_BASE":          ("llm.api_base", str),
    "CHATLOOP_LLM_API_KEY_ENV":       ("llm.api_key_env", str),
    "CHATLOOP_LLM_TIMEOUT":           ("llm.timeout_seconds", int),
    "CHATLOOP_LLM_MAX_RETRIES":       ("llm.max_retries", int),
    "CHATLOOP_ORCH_STREAMING":        ("orchestrator.streaming", bool),
    "CHATLOOP_ORCH_MAX_ROUNDS":       ("orchestrator.max_rounds", int),
    "CHATLOOP_ORCH_BAD_ARGUMENTS":    ("orchestrator.on_bad_arguments", str),
    "CHATLOOP_ORCH_SYSTEM_PROMPT":    ("orchestrator.system_prompt", str),
    "CHATLOOP_STREAM_FIXED_SLOTS":    ("stream.fixed_tool_slots", bool),
    "CHATLOOP_TOOLS_BUILTIN":         ("tools.builtin", list),
    "CHATLOOP_TOOLS_DISABLED":        ("tools.disabled", list),
    "CHATLOOP_TOOLS_TIMEOUT":         ("tools.timeout_seconds", float),
    "CHATLOOP_PLUGINS_ENABLED":       ("plugins.enabled", bool),
    "CHATLOOP_STORE_DB_PATH":         ("store.db_path", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> ChatloopConfig:
    """
    Build a ChatloopConfig by layering sources in precedence order.

    Parameters
    ----------
    config_path : path to YAML config file (optional; a missing file is skipped)
    profile : name of a profile under ``profiles:`` in the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides

    Raises ``ValueError`` for an unknown profile, an unparseable env value,
    or a config that fails ``validate()``.
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}

    profiles = raw.get("profiles") or {}
    if profile:
        if profile not in profiles:
            raise ValueError(f"Unknown profile: {profile}")
        raw = _deep_merge(raw, profiles[profile] or {})

    sections = {name: _build_section(cls, raw.get(name)) for name, cls in _SECTIONS.items()}
    cfg = ChatloopConfig(profiles=profiles, **sections)

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(env_var, val, target_type))

    for dotpath, value in (cli_overrides or {}).items():
        _apply_dotpath(cfg, dotpath, value)

    cfg.validate()
    return cfg
