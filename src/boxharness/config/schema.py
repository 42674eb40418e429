"""
boxharness: configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

What is included in this file
- Schema versioning.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys so typos in ``boxharness.toml`` surface immediately.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from boxharness.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BOX_COUNT,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_CONTROLLER_PORT,
    DEFAULT_DRAIN_SECONDS,
    DEFAULT_REDIRECT_CHUNK_SIZE,
    DEFAULT_RELAY_CHUNK_SIZE,
    DEFAULT_RUN_SECONDS,
    DEFAULT_WORKER_MEMORY_LIMIT,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

LAUNCH_POLICIES: Final[tuple[str, ...]] = ("abort_batch", "continue")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_MAX_PORT: Final[int] = 65535
_MAX_CHUNK_SIZE: Final[int] = 1 << 20

# Config paths normalized relative to the config file location (when non-empty).
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("box", "marker_dir"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ControllerConfig(TypedDict):
    host: str
    port: int
    box_count: int
    run_seconds: float
    drain_seconds: float


class BoxConfig(TypedDict):
    connect_timeout_ms: int
    relay_chunk_size: int
    write_marker: bool
    marker_dir: str


class SupervisorConfig(TypedDict):
    worker_memory_limit: str
    redirect_chunk_size: int
    launch_policy: Literal["abort_batch", "continue"]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str


class HarnessConfig(TypedDict):
    meta: MetaConfig
    controller: ControllerConfig
    box: BoxConfig
    supervisor: SupervisorConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[HarnessConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "controller": {
        "host": "",
        "port": DEFAULT_CONTROLLER_PORT,
        "box_count": DEFAULT_BOX_COUNT,
        "run_seconds": DEFAULT_RUN_SECONDS,
        "drain_seconds": DEFAULT_DRAIN_SECONDS,
    },
    "box": {
        "connect_timeout_ms": DEFAULT_CONNECT_TIMEOUT_MS,
        "relay_chunk_size": DEFAULT_RELAY_CHUNK_SIZE,
        "write_marker": True,
        "marker_dir": ".",
    },
    "supervisor": {
        "worker_memory_limit": DEFAULT_WORKER_MEMORY_LIMIT,
        "redirect_chunk_size": DEFAULT_REDIRECT_CHUNK_SIZE,
        "launch_policy": "abort_batch",
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_dir": "",
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> HarnessConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", "config root must be an object")
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(config, set(_SECTION_VALIDATORS), "", issues)
    _require_keys(config, set(_SECTION_VALIDATORS), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(_SECTION_VALIDATORS):
        raw = config.get(key)
        if raw is None:
            continue
        if not isinstance(raw, Mapping):
            issues.add(key, "section must be an object")
            continue
        out[key] = _SECTION_VALIDATORS[key](raw, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


# ---------------------------------------------------------------------------
# Section validators
# ---------------------------------------------------------------------------


def _validate_meta(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(section, {"schema_version"}, path, issues)
    version = _int_field(section, "schema_version", path, issues, minimum=1)
    if version is not None and version != ConfigSchemaVersion:
        issues.add(
            _join(path, "schema_version"),
            f"unsupported schema version {version}; expected {ConfigSchemaVersion}",
        )
    return {"schema_version": version}


def _validate_controller(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    keys = {"host", "port", "box_count", "run_seconds", "drain_seconds"}
    _reject_unknown_keys(section, keys, path, issues)
    _require_keys(section, keys, path, issues)
    return {
        "host": _str_field(section, "host", path, issues, allow_empty=True),
        "port": _int_field(section, "port", path, issues, minimum=0, maximum=_MAX_PORT),
        "box_count": _int_field(section, "box_count", path, issues, minimum=0),
        "run_seconds": _float_field(section, "run_seconds", path, issues),
        "drain_seconds": _float_field(section, "drain_seconds", path, issues),
    }


def _validate_box(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    keys = {"connect_timeout_ms", "relay_chunk_size", "write_marker", "marker_dir"}
    _reject_unknown_keys(section, keys, path, issues)
    _require_keys(section, keys, path, issues)
    return {
        "connect_timeout_ms": _int_field(section, "connect_timeout_ms", path, issues, minimum=1),
        "relay_chunk_size": _int_field(
            section, "relay_chunk_size", path, issues, minimum=1, maximum=_MAX_CHUNK_SIZE
        ),
        "write_marker": _bool_field(section, "write_marker", path, issues),
        "marker_dir": _str_field(section, "marker_dir", path, issues, allow_empty=False),
    }


def _validate_supervisor(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    keys = {"worker_memory_limit", "redirect_chunk_size", "launch_policy"}
    _reject_unknown_keys(section, keys, path, issues)
    _require_keys(section, keys, path, issues)
    return {
        # Passed through to the worker as-is; the format is the worker's concern.
        "worker_memory_limit": _str_field(
            section, "worker_memory_limit", path, issues, allow_empty=False
        ),
        "redirect_chunk_size": _int_field(
            section, "redirect_chunk_size", path, issues, minimum=1, maximum=_MAX_CHUNK_SIZE
        ),
        "launch_policy": _enum_field(section, "launch_policy", path, issues, LAUNCH_POLICIES),
    }


def _validate_observability(
    section: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    keys = {"log_level", "log_format", "log_dir"}
    _reject_unknown_keys(section, keys, path, issues)
    _require_keys(section, keys, path, issues)
    level = section.get("log_level")
    if isinstance(level, str):
        level = level.strip().upper()
    return {
        "log_level": _enum_value(level, _join(path, "log_level"), issues, LOG_LEVELS),
        "log_format": _enum_field(section, "log_format", path, issues, LOG_FORMATS),
        "log_dir": _str_field(section, "log_dir", path, issues, allow_empty=True),
    }


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]

_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "meta": _validate_meta,
    "controller": _validate_controller,
    "box": _validate_box,
    "supervisor": _validate_supervisor,
    "observability": _validate_observability,
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _int_field(
    section: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    if key not in section:
        return None
    value = section[key]
    field_path = _join(path, key)
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(field_path, "must be an integer")
        return None
    if minimum is not None and value < minimum:
        issues.add(field_path, f"must be >= {minimum}")
    if maximum is not None and value > maximum:
        issues.add(field_path, f"must be <= {maximum}")
    return value


def _float_field(
    section: Mapping[str, object], key: str, path: str, issues: _IssueCollector
) -> float | None:
    if key not in section:
        return None
    value = section[key]
    field_path = _join(path, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(field_path, "must be a number")
        return None
    if value != value or value < 0:
        issues.add(field_path, "must be a non-negative number")
    return float(value)


def _bool_field(
    section: Mapping[str, object], key: str, path: str, issues: _IssueCollector
) -> bool | None:
    if key not in section:
        return None
    value = section[key]
    if not isinstance(value, bool):
        issues.add(_join(path, key), "must be a boolean")
        return None
    return value


def _str_field(
    section: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    allow_empty: bool,
) -> str | None:
    if key not in section:
        return None
    value = section[key]
    field_path = _join(path, key)
    if not isinstance(value, str):
        issues.add(field_path, "must be a string")
        return None
    normalized = value.strip()
    if not normalized and not allow_empty:
        issues.add(field_path, "must not be empty")
    return normalized


def _enum_field(
    section: Mapping[str, object],
    key: str,
    path: str,
    issues: _IssueCollector,
    allowed: tuple[str, ...],
) -> str | None:
    if key not in section:
        return None
    return _enum_value(section[key], _join(path, key), issues, allowed)


def _enum_value(
    value: object, field_path: str, issues: _IssueCollector, allowed: tuple[str, ...]
) -> str | None:
    if not isinstance(value, str) or value not in allowed:
        issues.add(field_path, f"must be one of: {', '.join(allowed)}")
        return None
    return value


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(str(item) for item in payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown key")


def _require_keys(
    payload: Mapping[str, object], required: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "is required")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _deep_copy_mapping(payload: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, Mapping):
            out[str(key)] = _deep_copy_mapping(value)
        else:
            out[str(key)] = copy.deepcopy(value)
    return out


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(str(item) for item in overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            target[key] = _deep_copy_mapping(value)
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "HarnessConfig",
    "LAUNCH_POLICIES",
    "LOG_FORMATS",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
