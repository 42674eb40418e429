"""
boxharness: unit tests for config schema validation

Purpose
- Validate strict config schema behavior and structured errors.
"""

from __future__ import annotations

from typing import Any

import pytest

from boxharness.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)


def _with(section: str, **fields: Any) -> dict[str, Any]:
    return merge_config(default_config(), {section: fields})


def _issue_paths(config: dict[str, Any]) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_defaults_validate_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config == dict(DEFAULT_CONFIG)


def test_default_config_is_a_deep_copy() -> None:
    config = default_config()
    config["controller"]["port"] = 1
    assert DEFAULT_CONFIG["controller"]["port"] == 31337


def test_merge_config_is_deep_and_non_destructive() -> None:
    base = default_config()
    merged = merge_config(base, {"controller": {"port": 9}})

    assert merged["controller"]["port"] == 9
    assert merged["controller"]["box_count"] == 3
    assert base["controller"]["port"] == 31337


def test_root_must_be_mapping() -> None:
    result = validate_config(["not", "a", "mapping"])
    assert not result.is_valid
    assert result.issues[0].path == "<root>"


def test_missing_section_and_unknown_section_reported() -> None:
    config = dict(default_config())
    del config["box"]
    config["extra"] = {}

    paths = _issue_paths(config)

    assert "box" in paths
    assert "extra" in paths


@pytest.mark.parametrize(
    ("section", "fields", "path"),
    [
        ("controller", {"port": 70000}, "controller.port"),
        ("controller", {"port": True}, "controller.port"),
        ("controller", {"box_count": -1}, "controller.box_count"),
        ("controller", {"run_seconds": -0.5}, "controller.run_seconds"),
        ("box", {"connect_timeout_ms": 0}, "box.connect_timeout_ms"),
        ("box", {"write_marker": "yes"}, "box.write_marker"),
        ("box", {"marker_dir": "  "}, "box.marker_dir"),
        ("supervisor", {"launch_policy": "retry"}, "supervisor.launch_policy"),
        ("supervisor", {"redirect_chunk_size": 0}, "supervisor.redirect_chunk_size"),
        ("supervisor", {"worker_memory_limit": ""}, "supervisor.worker_memory_limit"),
        ("observability", {"log_level": "LOUD"}, "observability.log_level"),
        ("observability", {"log_format": "xml"}, "observability.log_format"),
    ],
)
def test_invalid_fields_report_dotted_paths(
    section: str, fields: dict[str, Any], path: str
) -> None:
    assert _issue_paths(_with(section, **fields)) == [path]


def test_schema_version_mismatch_rejected() -> None:
    assert _issue_paths(_with("meta", schema_version=2)) == ["meta.schema_version"]


def test_port_zero_is_allowed_for_ephemeral_binding() -> None:
    assert validate_config(_with("controller", port=0)).is_valid


def test_log_level_is_case_insensitive() -> None:
    validated = assert_valid_config(_with("observability", log_level="warning"))
    assert validated["observability"]["log_level"] == "WARNING"


def test_assert_valid_config_raises_with_all_issues() -> None:
    config = merge_config(
        default_config(),
        {"controller": {"port": -1}, "supervisor": {"launch_policy": "nope"}},
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    rendered = str(excinfo.value)
    assert "controller.port" in rendered
    assert "supervisor.launch_policy" in rendered
    assert len(excinfo.value.issues) == 2
