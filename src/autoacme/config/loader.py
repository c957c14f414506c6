"""Configuration loader.

Lifecycle::

    settings = load_settings("/etc/autoacme/config.yaml")
    settings.engine.retry_count        # typed access

Steps, in order:

1. parse YAML (``.yaml``/``.yml``) or JSON
2. resolve ``${VAR}`` / ``${VAR:-default}`` strings from the environment
3. validate against the bundled ``schema.json``
4. run cross-field checks, collecting every problem
5. build the frozen :class:`~autoacme.config.settings.AutoAcmeSettings`

Environment variables are resolved **before** schema validation so that
substituted values are checked against the schema's enum constraints.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from autoacme.config.settings import AutoAcmeSettings, build_settings
from autoacme.core.hostname import to_ascii_host_name

log = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_STRATEGY_SECTIONS = {
    "file": "http_file",
    "hosted": "http_hosted",
    "dns": "dns",
}


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when loading or validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        """Store *errors* and build a human-readable message."""
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_file(path: Path) -> dict:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read configuration file {path}: {exc}"
        raise ConfigValidationError([msg]) from exc
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Cannot parse configuration file {path}: {exc}"
        raise ConfigValidationError([msg]) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Configuration file {path} must contain a mapping at the top level"
        raise ConfigValidationError([msg])
    return data


def _load_schema() -> dict:
    with _SCHEMA_PATH.open(encoding="utf-8") as fh:
        return json.load(fh)


def _schema_errors(data: dict) -> list[str]:
    validator = jsonschema.Draft202012Validator(_load_schema())
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path)):
        location = ".".join(str(p) for p in err.absolute_path) or "<root>"
        errors.append(f"{location}: {err.message}")
    return errors


def additional_checks(data: dict) -> list[str]:
    """Semantic & cross-field validation of schema-valid *data*."""
    errors: list[str] = []
    challenges = data.get("challenges") or {}
    mode = challenges.get("mode", "auto")

    if mode in _STRATEGY_SECTIONS:
        section = _STRATEGY_SECTIONS[mode]
        if challenges.get(section) is None:
            errors.append(f"challenges.{section} is required when challenges.mode is '{mode}'")
    elif mode == "fallback":
        order = challenges.get("fallback_order", ["dns", "hosted", "file"])
        if not order:
            errors.append("challenges.fallback_order must not be empty")
        if len(set(order)) != len(order):
            errors.append("challenges.fallback_order must not contain duplicates")
        for name in order:
            section = _STRATEGY_SECTIONS.get(name)
            if section and challenges.get(section) is None:
                errors.append(
                    f"challenges.{section} is required because "
                    f"'{name}' is listed in challenges.fallback_order",
                )
    elif mode == "auto" and not any(challenges.get(s) is not None for s in _STRATEGY_SECTIONS.values()):
        errors.append("at least one of challenges.dns, challenges.http_hosted or challenges.http_file is required")

    dns_cfg = challenges.get("dns") or {}
    if dns_cfg.get("domain"):
        try:
            to_ascii_host_name(dns_cfg["domain"])
        except ValueError as exc:
            errors.append(f"challenges.dns.domain: {exc}")
    if bool(dns_cfg.get("tsig_key_name")) != bool(dns_cfg.get("tsig_secret")):
        errors.append("challenges.dns.tsig_key_name and challenges.dns.tsig_secret must be set together")

    hosted = challenges.get("http_hosted") or {}
    prefix = hosted.get("url_prefix")
    if prefix is not None and not prefix.startswith("http://"):
        errors.append(f"challenges.http_hosted.url_prefix must start with 'http://' (got '{prefix}')")

    return errors


def load_settings(config_file: str | Path) -> AutoAcmeSettings:
    """Load, resolve, validate and build the settings tree.

    Raises
    ------
    ConfigValidationError
        With every problem found, if the file is unreadable or invalid.

    """
    path = Path(config_file)
    data = _read_file(path)
    _resolve_env_vars(data)

    errors = _schema_errors(data)
    if not errors:
        errors = additional_checks(data)
    if errors:
        raise ConfigValidationError(errors)

    log.debug("Loaded configuration from %s", path)
    return build_settings(data)
