"""Layered configuration loading: defaults < YAML < env (HLSRELAY_*) < CLI."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import load_dotenv

from .defaults import DEFAULT_CONFIG
from .schema import AppConfig, EnvOverrides

_SECTIONS: tuple[str, ...] = ("http", "logging", "relay")
_TOP_LEVEL: tuple[str, ...] = ("app_name", "environment")

# Flat keys (env vars, CLI flags) and the section field they set.
_FLAT_KEYS: dict[str, tuple[str, str]] = {
    "http_timeout_seconds": ("http", "timeout_seconds"),
    "http_follow_redirects": ("http", "follow_redirects"),
    "http_user_agent": ("http", "user_agent"),
    "log_level": ("logging", "level"),
    "log_format": ("logging", "format"),
    "public_base_url": ("relay", "public_base_url"),
    "absolute_playlist_urls": ("relay", "absolute_playlist_urls"),
    "delegate_base_url": ("relay", "delegate_base_url"),
    "delegate_timeout_seconds": ("relay", "delegate_timeout_seconds"),
}


def _merge_into(target: dict[str, Any], layer: Mapping[str, Any]) -> None:
    """Deep-merge *layer* into *target*; lists (e.g. the rule table) are replaced."""
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, value)
        else:
            target[key] = value


def _expand_rule_shorthand(relay: dict[str, Any]) -> None:
    """Accept ``referer_rules`` as an ordered ``{referer: [patterns]}`` mapping.

    YAML mappings keep insertion order, so rule precedence is preserved.
    """
    rules = relay.get("referer_rules")
    if isinstance(rules, Mapping):
        relay["referer_rules"] = [
            {
                "referer": referer,
                "patterns": [patterns] if isinstance(patterns, str) else list(patterns),
            }
            for referer, patterns in rules.items()
        ]


def _sectioned(layer: Mapping[str, Any]) -> dict[str, Any]:
    """Bring one layer into the canonical sectioned shape used by ``AppConfig``."""
    out: dict[str, Any] = {
        key: layer[key] for key in _TOP_LEVEL if key in layer
    }
    for section in _SECTIONS:
        if isinstance(layer.get(section), Mapping):
            out[section] = dict(layer[section])
    for flat_key, (section, field_name) in _FLAT_KEYS.items():
        if flat_key in layer:
            out.setdefault(section, {})[field_name] = layer[flat_key]
    if "relay" in out:
        _expand_rule_shorthand(out["relay"])
    return out


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    parsed = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError(f"Config YAML must be a mapping, got: {type(parsed)!r}")
    return parsed


def load_config(
    *,
    config_path: Path | None = None,
    dotenv_path: Path | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """Merge every configuration layer and validate the result.

    A ``.env`` file is loaded into the process environment first (without
    overriding variables already set), so it takes part in the env layer.
    No files or directories are created.
    """
    if dotenv_path is not None:
        if not dotenv_path.exists():
            raise FileNotFoundError(dotenv_path)
        load_dotenv(dotenv_path, override=False)

    layers: list[Mapping[str, Any]] = [deepcopy(DEFAULT_CONFIG)]
    if config_path is not None:
        layers.append(_read_yaml(config_path))
    layers.append(EnvOverrides().to_update_dict())
    layers.append(cli_overrides or {})

    merged: dict[str, Any] = {}
    for layer in layers:
        _merge_into(merged, _sectioned(layer))

    return AppConfig.model_validate(merged)
