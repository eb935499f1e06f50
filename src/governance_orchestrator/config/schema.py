"""
governance-orchestrator — configuration schema and validation.

File: src/governance_orchestrator/config/schema.py
Last updated: 2026-10-17

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Per-section field rules (type, bounds, choices) and cross-field checks.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return every issue found (field path + message),
  not just the first.
- Support named profile overlays.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from governance_orchestrator.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive", "test")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "apikey", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = ("api_key", "private_key", "client_secret")

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("storage", "state_db"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class OrchestratorSection(TypedDict):
    max_concurrent_workflows: int
    admission_queue_size: int
    stage_timeout_seconds: float
    workflow_timeout_seconds: float
    heartbeat_interval_seconds: float
    min_consensus_score: float


class SpecialistsConfig(TypedDict):
    max_concurrent_tasks: int
    queue_capacity: int


class QualityGateConfig(TypedDict):
    min_confidence: float
    length_penalty: float
    token_penalty: float
    placeholder_penalty: float
    token_budget_tolerance: float
    tokens_per_word: float


class RetryConfig(TypedDict):
    max_retries: int
    initial_delay_seconds: float
    multiplier: float
    max_delay_seconds: float


class KPIConfig(TypedDict):
    window_capacity: int
    heartbeat_capacity: int
    alert_capacity: int


class StorageConfig(TypedDict):
    backend: Literal["memory", "sqlite"]
    state_db: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    orchestrator: dict[str, object]
    specialists: dict[str, object]
    quality_gate: dict[str, object]
    retry: dict[str, object]
    kpi: dict[str, object]
    storage: dict[str, object]
    observability: dict[str, object]


class GovernanceConfig(TypedDict):
    meta: MetaConfig
    orchestrator: OrchestratorSection
    specialists: SpecialistsConfig
    quality_gate: QualityGateConfig
    retry: RetryConfig
    kpi: KPIConfig
    storage: StorageConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[GovernanceConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "orchestrator": {
        "max_concurrent_workflows": 10,
        "admission_queue_size": 100,
        "stage_timeout_seconds": 300.0,
        "workflow_timeout_seconds": 168 * 3600.0,
        "heartbeat_interval_seconds": 30.0,
        "min_consensus_score": 60.0,
    },
    "specialists": {
        "max_concurrent_tasks": 5,
        "queue_capacity": 100,
    },
    "quality_gate": {
        "min_confidence": 70.0,
        "length_penalty": 30.0,
        "token_penalty": 10.0,
        "placeholder_penalty": 20.0,
        "token_budget_tolerance": 1.2,
        "tokens_per_word": 1.3,
    },
    "retry": {
        "max_retries": 3,
        "initial_delay_seconds": 1.0,
        "multiplier": 2.0,
        "max_delay_seconds": 3600.0,
    },
    "kpi": {
        "window_capacity": 1000,
        "heartbeat_capacity": 100,
        "alert_capacity": 1000,
    },
    "storage": {
        "backend": "memory",
        "state_db": "state/governance.sqlite",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": True,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "quality_gate": {"min_confidence": 80.0},
            "orchestrator": {"min_consensus_score": 70.0},
        },
        "permissive": {
            "quality_gate": {"min_confidence": 50.0},
        },
        "test": {
            "retry": {"initial_delay_seconds": 0.0, "max_delay_seconds": 0.0},
            "storage": {"backend": "memory"},
            "observability": {"log_to_stdout": False},
        },
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


@dataclass(frozen=True, slots=True)
class _FieldRule:
    kind: Literal["int", "float", "bool", "str", "enum", "path"]
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] = ()


_INT_POSITIVE = _FieldRule("int", minimum=1)
_FLOAT_NON_NEGATIVE = _FieldRule("float", minimum=0.0)
_PERCENT = _FieldRule("float", minimum=0.0, maximum=100.0)

SECTION_RULES: Final[dict[str, dict[str, _FieldRule]]] = {
    "orchestrator": {
        "max_concurrent_workflows": _INT_POSITIVE,
        "admission_queue_size": _INT_POSITIVE,
        "stage_timeout_seconds": _FieldRule("float", minimum=0.001),
        "workflow_timeout_seconds": _FieldRule("float", minimum=0.001),
        "heartbeat_interval_seconds": _FieldRule("float", minimum=0.001),
        "min_consensus_score": _PERCENT,
    },
    "specialists": {
        "max_concurrent_tasks": _INT_POSITIVE,
        "queue_capacity": _INT_POSITIVE,
    },
    "quality_gate": {
        "min_confidence": _PERCENT,
        "length_penalty": _PERCENT,
        "token_penalty": _PERCENT,
        "placeholder_penalty": _PERCENT,
        "token_budget_tolerance": _FieldRule("float", minimum=1.0),
        "tokens_per_word": _FieldRule("float", minimum=0.1),
    },
    "retry": {
        "max_retries": _INT_POSITIVE,
        "initial_delay_seconds": _FLOAT_NON_NEGATIVE,
        "multiplier": _FieldRule("float", minimum=1.0),
        "max_delay_seconds": _FLOAT_NON_NEGATIVE,
    },
    "kpi": {
        "window_capacity": _INT_POSITIVE,
        "heartbeat_capacity": _FieldRule("int", minimum=2),
        "alert_capacity": _INT_POSITIVE,
    },
    "storage": {
        "backend": _FieldRule("enum", choices=("memory", "sqlite")),
        "state_db": _FieldRule("path"),
    },
    "observability": {
        "log_level": _FieldRule("enum", choices=("DEBUG", "INFO", "WARNING", "ERROR")),
        "log_dir": _FieldRule("path"),
        "log_to_stdout": _FieldRule("bool"),
        "redact_secrets": _FieldRule("bool"),
    },
}


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


def default_config() -> GovernanceConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade the config file to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the governance-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw))


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")
        else:
            _validate_root(merge_config(normalized, profiles[selected_profile]), issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"meta", "profiles", *SECTION_RULES}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, {"meta", *SECTION_RULES}, "", issues)

    out: dict[str, Any] = {}

    meta = payload.get("meta")
    if meta is not None:
        meta_obj = _as_object(meta, "meta", issues)
        if meta_obj is not None:
            out["meta"] = _validate_meta(meta_obj, issues)

    for section_name in sorted(SECTION_RULES):
        raw = payload.get(section_name)
        if raw is None:
            continue
        section = _as_object(raw, section_name, issues)
        if section is None:
            continue
        out[section_name] = _validate_section(section_name, section, issues, partial=False)

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_obj = _as_object(profiles_raw, "profiles", issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, issues)

    _validate_cross_fields(out, issues)
    return out


def _validate_meta(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, "meta", issues)
    _require_keys(payload, {"schema_version"}, "meta", issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], "meta.schema_version", issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add("meta.schema_version", migration_guidance(parsed))
    return out


def _validate_section(
    section_name: str,
    payload: Mapping[str, object],
    issues: _IssueCollector,
    *,
    partial: bool,
    path: str | None = None,
) -> dict[str, Any]:
    rules = SECTION_RULES[section_name]
    section_path = path if path is not None else section_name
    _reject_unknown_keys(payload, set(rules), section_path, issues)
    if not partial:
        _require_keys(payload, set(rules), section_path, issues)

    out: dict[str, Any] = {}
    for key in sorted(rules):
        if key not in payload:
            continue
        parsed = _apply_rule(rules[key], payload[key], _join(section_path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _apply_rule(rule: _FieldRule, value: object, path: str, issues: _IssueCollector) -> object:
    if rule.kind == "int":
        parsed_int = _as_int(value, path, issues, minimum=_int_or_none(rule.minimum))
        if parsed_int is not None and rule.maximum is not None and parsed_int > rule.maximum:
            issues.add(path, f"must be <= {rule.maximum:g}")
            return None
        return parsed_int
    if rule.kind == "float":
        parsed_float = _as_float(value, path, issues, minimum=rule.minimum)
        if parsed_float is not None and rule.maximum is not None and parsed_float > rule.maximum:
            issues.add(path, f"must be <= {rule.maximum:g}")
            return None
        return parsed_float
    if rule.kind == "bool":
        return _as_bool(value, path, issues)
    if rule.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=rule.choices)
    if rule.kind == "path":
        return _as_path_text(value, path, issues)
    return _as_str(value, path, issues)


def _validate_profiles(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join("profiles", profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue

        _reject_unknown_keys(profile_obj, set(SECTION_RULES), profile_path, issues)
        overlay: dict[str, Any] = {}
        for section_name in sorted(SECTION_RULES):
            raw = profile_obj.get(section_name)
            if raw is None:
                continue
            section_path = _join(profile_path, section_name)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is None:
                continue
            overlay[section_name] = _validate_section(
                section_name, section_obj, issues, partial=True, path=section_path
            )
        out[profile_name] = overlay
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    retry = config.get("retry")
    if isinstance(retry, Mapping):
        initial = retry.get("initial_delay_seconds")
        maximum = retry.get("max_delay_seconds")
        if isinstance(initial, float) and isinstance(maximum, float) and maximum < initial:
            issues.add("retry.max_delay_seconds", "must be >= retry.initial_delay_seconds")

    orchestrator = config.get("orchestrator")
    if isinstance(orchestrator, Mapping):
        stage = orchestrator.get("stage_timeout_seconds")
        workflow = orchestrator.get("workflow_timeout_seconds")
        if isinstance(stage, float) and isinstance(workflow, float) and stage > workflow:
            issues.add(
                "orchestrator.stage_timeout_seconds",
                "must be <= orchestrator.workflow_timeout_seconds",
            )


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum:g}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _int_or_none(value: float | None) -> int | None:
    return None if value is None else int(value)


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in config files")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _NON_ALNUM.sub("_", key.strip().lower()).strip("_")
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return any(token in _SENSITIVE_KEY_TOKENS for token in normalized.split("_") if token)


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = existing if isinstance(existing, dict) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "SECTION_RULES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "GovernanceConfig",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
