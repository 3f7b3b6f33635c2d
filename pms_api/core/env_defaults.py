"""Deployment-wide integration defaults, read once from Settings."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from pms_api.core.config import Settings, settings
from pms_api.core.integration_registry import (
    INTEGRATIONS,
    get_definition,
    is_blank,
    normalize_value,
)
from pms_api.db.enums import IntegrationKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvDefaults:
    """
    Read-only fallback values per integration.

    Values are normalized the same way as organization-saved values, so
    ``SMTP_SECURE=True`` is stored as ``"true"``. Blank or invalid
    environment values are omitted, so a field either has a usable default
    or none at all. Built once and passed to the credential store; tests
    construct their own with ``EnvDefaults.from_mapping``.
    """

    values: Mapping[IntegrationKey, Mapping[str, str]]

    @classmethod
    def from_settings(cls, config: Settings) -> "EnvDefaults":
        values: dict[IntegrationKey, dict[str, str]] = {}
        for key, definition in INTEGRATIONS.items():
            values[key] = {
                spec.key: getattr(config, spec.env_var, None)
                for spec in definition.fields
                if spec.env_var
            }
        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, values: Mapping[IntegrationKey | str, Mapping[str, str]]) -> "EnvDefaults":
        frozen = {
            IntegrationKey(key): MappingProxyType(_normalize_defaults(IntegrationKey(key), fields))
            for key, fields in values.items()
        }
        return cls(values=MappingProxyType(frozen))

    def for_integration(self, key: IntegrationKey) -> dict[str, str]:
        """Copy of the defaults for one integration (empty when none)."""
        return dict(self.values.get(IntegrationKey(key), {}))

    def has_defaults(self, key: IntegrationKey) -> bool:
        """True when the integration's primary field is set in the environment."""
        definition = get_definition(key)
        return definition.primary_field in self.values.get(definition.key, {})


def _normalize_defaults(key: IntegrationKey, fields: Mapping[str, str]) -> dict[str, str]:
    definition = get_definition(key)
    normalized: dict[str, str] = {}
    for name, raw in fields.items():
        if is_blank(raw):
            continue
        spec = definition.field_map.get(name)
        if spec is None:
            logger.warning("Ignoring unknown default field %s.%s", key.value, name)
            continue
        try:
            normalized[name] = normalize_value(spec, raw)
        except ValueError as exc:
            logger.warning(
                "Ignoring invalid default for %s.%s: %s", key.value, name, exc
            )
    return normalized


_env_defaults: EnvDefaults | None = None


def get_env_defaults() -> EnvDefaults:
    """Get or create the process-wide defaults (FastAPI dependency)."""
    global _env_defaults
    if _env_defaults is None:
        _env_defaults = EnvDefaults.from_settings(settings)
    return _env_defaults
