"""Integration settings schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from pms_api.db.enums import ConnectionOutcome, FieldSource, IntegrationKey, IntegrationState


class MaskedField(BaseModel):
    """
    Display form of one effective field.

    Secret values are masked. ``source=not_configured`` (with ``value=None``)
    marks a field that has no value anywhere, which is distinct from a field
    configured with some value.
    """

    model_config = ConfigDict(frozen=True)

    value: str | None
    source: FieldSource
    secret: bool

    @property
    def configured(self) -> bool:
        return self.source != FieldSource.NOT_CONFIGURED


class MaskedSettings(BaseModel):
    """Effective settings for one integration, safe to send to a browser."""

    integration: IntegrationKey
    name: str
    has_custom: bool
    state: IntegrationState
    last_verified_at: datetime | None = None
    fields: dict[str, MaskedField]


class ConnectionTestResult(BaseModel):
    """Outcome of a live connection test. Reported as data, never raised."""

    valid: bool
    message: str
    kind: ConnectionOutcome


class IntegrationStatus(BaseModel):
    integration: IntegrationKey
    name: str
    has_custom: bool
    has_env_default: bool
    state: IntegrationState


class IntegrationSettingsUpdate(BaseModel):
    """Update request. Secret values are plain text and encrypted before storage."""

    fields: dict[str, Any]
    partial: bool = False


class IntegrationFieldRead(BaseModel):
    key: str
    label: str
    kind: str
    secret: bool
    required: bool
    help_text: str | None = None
    choices: list[str] | None = None


class IntegrationDefinitionRead(BaseModel):
    integration: IntegrationKey
    name: str
    fields: list[IntegrationFieldRead]
