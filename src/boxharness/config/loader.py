"""
boxharness: runtime config loader.

Purpose
- Build the effective harness config from defaults, ``boxharness.toml``,
  ``BOXHARNESS_*`` environment variables, and CLI flags (highest wins).

Environment
- Only the variables listed in ``_ENV_BINDINGS`` are read. Each one targets a
  single ``section.field`` and is coerced before validation, so a bad value is
  reported against the variable name rather than the field.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from boxharness.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "boxharness.toml"
ENV_PREFIX: Final[str] = "BOXHARNESS_"


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _as_str(raw: str) -> str:
    return raw


def _as_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _as_seconds(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _as_flag(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


# env suffix -> (section, field, coercer); schema_version is file-only.
_ENV_BINDINGS: Final[dict[str, tuple[str, str, Callable[[str], object]]]] = {
    "CONTROLLER_HOST": ("controller", "host", _as_str),
    "CONTROLLER_PORT": ("controller", "port", _as_int),
    "CONTROLLER_BOX_COUNT": ("controller", "box_count", _as_int),
    "CONTROLLER_RUN_SECONDS": ("controller", "run_seconds", _as_seconds),
    "CONTROLLER_DRAIN_SECONDS": ("controller", "drain_seconds", _as_seconds),
    "BOX_CONNECT_TIMEOUT_MS": ("box", "connect_timeout_ms", _as_int),
    "BOX_RELAY_CHUNK_SIZE": ("box", "relay_chunk_size", _as_int),
    "BOX_WRITE_MARKER": ("box", "write_marker", _as_flag),
    "BOX_MARKER_DIR": ("box", "marker_dir", _as_str),
    "SUPERVISOR_WORKER_MEMORY_LIMIT": ("supervisor", "worker_memory_limit", _as_str),
    "SUPERVISOR_REDIRECT_CHUNK_SIZE": ("supervisor", "redirect_chunk_size", _as_int),
    "SUPERVISOR_LAUNCH_POLICY": ("supervisor", "launch_policy", _as_str),
    "OBSERVABILITY_LOG_LEVEL": ("observability", "log_level", _as_str),
    "OBSERVABILITY_LOG_FORMAT": ("observability", "log_format", _as_str),
    "OBSERVABILITY_LOG_DIR": ("observability", "log_dir", _as_str),
}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config: CLI > env > file > defaults.

    A missing default ``boxharness.toml`` is fine; a missing explicit path is an error.
    CLI override keys are ``"section.field"``; ``None`` values are skipped so
    unset argparse options can be passed straight through.
    """

    if config_path is None:
        source = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        source = Path(config_path).expanduser().resolve()

    from_file = _read_toml(source, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), from_file))

    config = merge_config(config, env_overrides(os.environ if environ is None else environ))
    config = merge_config(config, _cli_payload(cli_overrides or {}))
    config = assert_valid_config(config)

    for section, field in PATH_FIELDS:
        value = config[section][field]
        if value:
            config[section][field] = _anchor_path(value, source.parent)
    return config


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect the ``BOXHARNESS_*`` overrides present in ``environ`` as sections."""

    overrides: dict[str, dict[str, object]] = {}
    for suffix, (section, field, coerce) in _ENV_BINDINGS.items():
        name = ENV_PREFIX + suffix
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {section}.{field} {exc}") from exc
        overrides.setdefault(section, {})[field] = value
    return overrides


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _cli_payload(cli_overrides: Mapping[str, object]) -> dict[str, dict[str, object]]:
    payload: dict[str, dict[str, object]] = {}
    for key, value in cli_overrides.items():
        if value is None:
            continue
        section, dot, field = key.partition(".")
        if not dot or not section or not field or "." in field:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected section.field")
        payload.setdefault(section, {})[field] = value
    return payload


def _anchor_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_overrides",
    "load_config",
]
