"""Engine configuration.

Defaults live in code; an optional YAML file and environment variables
override them. Example ``.nodeflow/config.yaml``::

    pacing_delay: 0.3
    preview_capacity: 100
    timeouts:
      text: 60
      image: 180
    sandbox:
      max_code_length: 10000
      timeout: 15
      memory_limit_mb: 256
    provider:
      base_url: http://localhost:3000
      api_keys:
        openai: sk-...
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from nodeflow.core.errors import ConfigError
from nodeflow.core.models import OperationClass

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".nodeflow") / "config.yaml"

KNOWN_PROVIDERS = ("openai", "anthropic", "google")


def _default_timeouts() -> dict[str, float]:
    return {
        OperationClass.TEXT.value: 60.0,
        OperationClass.IMAGE.value: 120.0,
        OperationClass.AUDIO.value: 120.0,
        OperationClass.CODE.value: 15.0,
        OperationClass.DEFAULT.value: 60.0,
    }


@dataclass
class SandboxLimits:
    """Limits for the custom-code evaluator."""

    max_code_length: int = 10_000
    timeout: float = 15.0  # Wall-clock seconds before the child process is killed
    memory_limit_mb: int = 256  # Address-space limit for the child process
    max_output_bytes: int = 1024 * 1024


@dataclass
class ProviderSettings:
    """Where and how to reach the AI provider backend."""

    base_url: str = "http://localhost:3000"
    api_keys: dict[str, str] = field(default_factory=dict)
    require_keys: bool = True  # Check keys for every provider used before a run


@dataclass
class EngineConfig:
    """Configuration for the flow execution engine."""

    timeouts: dict[str, float] = field(default_factory=_default_timeouts)
    pacing_delay: float = 0.0  # Seconds to pause before each node handler
    preview_capacity: int = 200  # Max entries kept in the terminal-output log
    sandbox: SandboxLimits = field(default_factory=SandboxLimits)
    provider: ProviderSettings = field(default_factory=ProviderSettings)

    def timeout_for(self, operation: OperationClass | str) -> float | None:
        key = operation.value if isinstance(operation, OperationClass) else operation
        if key in self.timeouts:
            return self.timeouts[key]
        if key == OperationClass.USER_INPUT.value:
            return None
        return self.timeouts.get(OperationClass.DEFAULT.value, 60.0)


def _check_keys(section: str, raw: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(raw) - allowed
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}' config: {sorted(unknown)}")


def _positive(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    if number < 0:
        raise ConfigError(f"'{name}' must be >= 0, got {number}")
    return number


def config_from_dict(raw: dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from a parsed YAML mapping."""
    _check_keys("root", raw, {"timeouts", "pacing_delay", "preview_capacity", "sandbox", "provider"})
    config = EngineConfig()

    for op, seconds in (raw.get("timeouts") or {}).items():
        if op not in {c.value for c in OperationClass}:
            raise ConfigError(f"Unknown operation class in timeouts: '{op}'")
        config.timeouts[op] = _positive(f"timeouts.{op}", seconds)

    if "pacing_delay" in raw:
        config.pacing_delay = _positive("pacing_delay", raw["pacing_delay"])
    if "preview_capacity" in raw:
        config.preview_capacity = int(_positive("preview_capacity", raw["preview_capacity"]))

    sandbox = raw.get("sandbox") or {}
    _check_keys("sandbox", sandbox, {"max_code_length", "timeout", "memory_limit_mb", "max_output_bytes"})
    for key, value in sandbox.items():
        number = _positive(f"sandbox.{key}", value)
        setattr(config.sandbox, key, number if key == "timeout" else int(number))

    provider = raw.get("provider") or {}
    _check_keys("provider", provider, {"base_url", "api_keys", "require_keys"})
    if "base_url" in provider:
        config.provider.base_url = str(provider["base_url"])
    if "require_keys" in provider:
        config.provider.require_keys = bool(provider["require_keys"])
    config.provider.api_keys.update(
        {str(k): str(v) for k, v in (provider.get("api_keys") or {}).items() if v}
    )
    return config


def apply_env_overrides(config: EngineConfig, environ: dict[str, str] | None = None) -> EngineConfig:
    """Apply NODEFLOW_* and <PROVIDER>_API_KEY environment variables."""
    env = os.environ if environ is None else environ

    if env.get("NODEFLOW_PROVIDER_URL"):
        config.provider.base_url = env["NODEFLOW_PROVIDER_URL"]
    if env.get("NODEFLOW_PACING_DELAY"):
        config.pacing_delay = _positive("NODEFLOW_PACING_DELAY", env["NODEFLOW_PACING_DELAY"])
    for provider in KNOWN_PROVIDERS:
        key = env.get(f"{provider.upper()}_API_KEY")
        if key and provider not in config.provider.api_keys:
            config.provider.api_keys[provider] = key
    return config


def load_config(path: str | Path | None = None, environ: dict[str, str] | None = None) -> EngineConfig:
    """Load config from YAML (if present) and apply environment overrides.

    An explicitly passed path must exist; the default path is optional.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        logger.debug(f"Loaded config from {config_path}")
    elif path:
        raise ConfigError(f"Config file not found: {config_path}")

    return apply_env_overrides(config_from_dict(raw), environ)
