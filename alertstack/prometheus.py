"""Wiring of AlertManager targets into the Prometheus configuration."""

from typing import Any, Optional

import yaml

DEFAULT_GLOBAL = {"scrape_interval": "15s", "evaluation_interval": "15s"}


def wire_alertmanager(
    config_text: Optional[str], target: str, rule_files: Optional[str] = None
) -> Optional[str]:
    """
    Add an AlertManager target (and rules glob) to a Prometheus config.

    Everything else in the document is preserved.

    Args:
        config_text: Current ``prometheus.yml`` content, None or empty for none
        target: ``host:port`` of the AlertManager service
        rule_files: Rule file glob to reference

    Returns:
        The updated document, or None when it already references the target
        and rules glob
    """
    document: dict[str, Any] = yaml.safe_load(config_text or "") or {}
    if not isinstance(document, dict):
        raise ValueError("Prometheus configuration is not a mapping")
    changed = False

    if not document:
        document["global"] = dict(DEFAULT_GLOBAL)
        changed = True

    if rule_files:
        files = _list_field(document, "rule_files")
        if rule_files not in files:
            files.append(rule_files)
            changed = True

    alerting = document.get("alerting")
    if alerting is None:
        alerting = {}
    elif not isinstance(alerting, dict):
        raise ValueError("'alerting' is not a mapping")
    document["alerting"] = alerting
    managers = _list_field(alerting, "alertmanagers")
    for manager in managers:
        if not isinstance(manager, dict):
            raise ValueError("'alertmanagers' entries must be mappings")
        for static in _list_field(manager, "static_configs"):
            if not isinstance(static, dict):
                raise ValueError("'static_configs' entries must be mappings")
            _list_field(static, "targets")

    present = any(
        target in static["targets"]
        for manager in managers
        for static in manager["static_configs"]
    )
    if not present:
        if managers:
            statics = managers[0]["static_configs"]
            if statics:
                statics[0]["targets"].append(target)
            else:
                statics.append({"targets": [target]})
        else:
            managers.append({"static_configs": [{"targets": [target]}]})
        changed = True

    if not changed:
        return None
    return yaml.safe_dump(document, sort_keys=False)


def _list_field(section: dict[str, Any], key: str) -> list[Any]:
    """Return ``section[key]`` as a list, creating it when missing or null."""
    value = section.get(key)
    if value is None:
        value = []
    elif not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    section[key] = value
    return value


def patch_fragment(config_key: str, config_text: str) -> dict[str, Any]:
    """Merge-patch body replacing one key of a config map."""
    return {"data": {config_key: config_text}}
