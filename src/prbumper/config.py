from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_TOKEN_ENV = "PAT"
FALLBACK_TOKEN_ENV = "GH_TOKEN"


@dataclass(frozen=True)
class RuntimeConfig:
    dry_run: bool = False
    skip_non_owned_repos: bool = True
    max_comments_per_run: int = 5
    relaxed_pass_floor: int = 2
    strict_stall_minutes: int = 60
    relaxed_stall_minutes: int = 30
    recent_comments_to_fetch: int = 5
    timeline_events_to_fetch: int = 100
    token_env: str = DEFAULT_TOKEN_ENV

    @property
    def strict_stall_threshold(self) -> timedelta:
        return timedelta(minutes=self.strict_stall_minutes)

    @property
    def relaxed_stall_threshold(self) -> timedelta:
        return timedelta(minutes=self.relaxed_stall_minutes)


@dataclass(frozen=True)
class IdentityConfig:
    bot_login: str = "copilot[bot]"
    assignee: str = "Copilot"


@dataclass(frozen=True)
class OracleConfig:
    enabled: bool = True
    model: str = "openai/gpt-4.1"
    temperature: float = 0.3


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)


class ConfigError(ValueError):
    pass


def load_config(path: Path | None) -> AppConfig:
    if path is None:
        return _validate(AppConfig())
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    runtime_data = _optional_table(data, "runtime") or {}
    identity_data = _optional_table(data, "identity") or {}
    oracle_data = _optional_table(data, "oracle") or {}

    runtime_defaults = RuntimeConfig()
    runtime = RuntimeConfig(
        dry_run=_bool_with_default(runtime_data, "dry_run", runtime_defaults.dry_run),
        skip_non_owned_repos=_bool_with_default(
            runtime_data, "skip_non_owned_repos", runtime_defaults.skip_non_owned_repos
        ),
        max_comments_per_run=_int_with_default(
            runtime_data, "max_comments_per_run", runtime_defaults.max_comments_per_run
        ),
        relaxed_pass_floor=_int_with_default(
            runtime_data, "relaxed_pass_floor", runtime_defaults.relaxed_pass_floor
        ),
        strict_stall_minutes=_int_with_default(
            runtime_data, "strict_stall_minutes", runtime_defaults.strict_stall_minutes
        ),
        relaxed_stall_minutes=_int_with_default(
            runtime_data, "relaxed_stall_minutes", runtime_defaults.relaxed_stall_minutes
        ),
        recent_comments_to_fetch=_int_with_default(
            runtime_data, "recent_comments_to_fetch", runtime_defaults.recent_comments_to_fetch
        ),
        timeline_events_to_fetch=_int_with_default(
            runtime_data, "timeline_events_to_fetch", runtime_defaults.timeline_events_to_fetch
        ),
        token_env=_str_with_default(runtime_data, "token_env", runtime_defaults.token_env),
    )

    identity_defaults = IdentityConfig()
    identity = IdentityConfig(
        bot_login=_login_with_default(identity_data, "bot_login", identity_defaults.bot_login),
        assignee=_str_with_default(identity_data, "assignee", identity_defaults.assignee),
    )

    oracle_defaults = OracleConfig()
    oracle = OracleConfig(
        enabled=_bool_with_default(oracle_data, "enabled", oracle_defaults.enabled),
        model=_str_with_default(oracle_data, "model", oracle_defaults.model),
        temperature=_float_with_default(oracle_data, "temperature", oracle_defaults.temperature),
    )

    return _validate(AppConfig(runtime=runtime, identity=identity, oracle=oracle))


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    """Honor the DRY_RUN / SKIP_NON_OWNED_REPOS switches used by scheduled jobs."""
    runtime = config.runtime
    dry_run_raw = environ.get("DRY_RUN")
    if dry_run_raw is not None and dry_run_raw.strip().lower() == "true":
        runtime = replace(runtime, dry_run=True)
    skip_raw = environ.get("SKIP_NON_OWNED_REPOS")
    if skip_raw is not None and skip_raw.strip().lower() == "false":
        runtime = replace(runtime, skip_non_owned_repos=False)
    if runtime is config.runtime:
        return config
    return replace(config, runtime=runtime)


def resolve_token(config: AppConfig, environ: Mapping[str, str]) -> str:
    for name in (config.runtime.token_env, FALLBACK_TOKEN_ENV):
        value = environ.get(name, "").strip()
        if value:
            return value
    raise ConfigError(
        f"{config.runtime.token_env} not provided. "
        "Please set a Personal Access Token with appropriate permissions."
    )


def gh_env(token: str, environ: Mapping[str, str]) -> dict[str, str]:
    env = dict(environ)
    env["GH_TOKEN"] = token
    return env


def _validate(config: AppConfig) -> AppConfig:
    runtime = config.runtime
    if runtime.max_comments_per_run < 0:
        raise ConfigError("runtime.max_comments_per_run must be >= 0")
    if runtime.relaxed_pass_floor < 0:
        raise ConfigError("runtime.relaxed_pass_floor must be >= 0")
    if runtime.relaxed_stall_minutes < 1:
        raise ConfigError("runtime.relaxed_stall_minutes must be >= 1")
    if runtime.strict_stall_minutes <= runtime.relaxed_stall_minutes:
        raise ConfigError(
            "runtime.strict_stall_minutes must be greater than runtime.relaxed_stall_minutes"
        )
    if runtime.recent_comments_to_fetch < 1:
        raise ConfigError("runtime.recent_comments_to_fetch must be >= 1")
    if runtime.timeline_events_to_fetch < 1:
        raise ConfigError("runtime.timeline_events_to_fetch must be >= 1")
    if not 0.0 <= config.oracle.temperature <= 2.0:
        raise ConfigError("oracle.temperature must be between 0 and 2")
    return config


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _float_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{key} must be a non-empty string")
    return value.strip()


def _login_with_default(data: dict[str, object], key: str, default: str) -> str:
    return _str_with_default(data, key, default).lower()
