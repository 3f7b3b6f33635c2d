"""
Integration settings service - per-organization third-party credentials.

Security:
- Secret fields are Fernet-encrypted before they reach the database
- Reads return masked values only; plaintext stays inside this module and
  the provider checks
- Every save/clear/test writes one audit entry after the change commits;
  field names may appear in audit metadata, values never do

Effective configuration is the organization record merged over the
environment defaults, field by field.
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

import anyio
import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pms_api.core.config import settings
from pms_api.core.encryption import SecretDecryptionError, get_codec, is_encrypted, mask_secret
from pms_api.core.env_defaults import EnvDefaults, get_env_defaults
from pms_api.core.integration_registry import (
    INTEGRATIONS,
    IntegrationDefinition,
    get_definition,
    normalize_fields,
    validate_values,
)
from pms_api.core.structured_logging import build_log_context
from pms_api.db.enums import (
    AuditAction,
    AuditEntityType,
    ConnectionOutcome,
    FieldSource,
    IntegrationKey,
    IntegrationState,
)
from pms_api.db.models import IntegrationSetting
from pms_api.schemas.audit import AuditContext, AuditEntry
from pms_api.schemas.auth import AuthContext
from pms_api.schemas.integrations import (
    ConnectionTestResult,
    IntegrationStatus,
    MaskedField,
    MaskedSettings,
)
from pms_api.services import audit_service
from pms_api.services.errors import PersistenceError, SettingsValidationError
from pms_api.services.integration_providers import (
    PROVIDER_CHECKS,
    ProviderRejected,
    ProviderUnreachable,
)
from pms_api.services.verification_cache import verification_cache

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_extra(org_id: UUID, key: IntegrationKey, user_id: UUID | None = None) -> dict:
    return build_log_context(
        user_id=str(user_id) if user_id else None,
        org_id=str(org_id),
        integration=key.value,
    )


# =============================================================================
# Reads
# =============================================================================


def _get_record(db: Session, org_id: UUID, key: IntegrationKey) -> IntegrationSetting | None:
    return db.scalar(
        select(IntegrationSetting).where(
            IntegrationSetting.organization_id == org_id,
            IntegrationSetting.integration_key == key.value,
        )
    )


def _decrypt_record(definition: IntegrationDefinition, record: IntegrationSetting) -> dict[str, str]:
    """
    Plaintext values of a stored record.

    Undecryptable secrets (for example after a key was retired) are skipped
    with a warning and treated as absent.
    """
    codec = get_codec()
    secret_fields = definition.secret_fields
    values: dict[str, str] = {}
    for name, stored in (record.values or {}).items():
        if name not in definition.field_map or stored is None or stored == "":
            continue
        if name in secret_fields:
            if not is_encrypted(stored):
                logger.warning(
                    "Secret field %s stored without encryption; ignoring",
                    name,
                    extra=_log_extra(record.organization_id, definition.key),
                )
                continue
            try:
                values[name] = codec.decrypt(stored)
            except SecretDecryptionError:
                logger.warning(
                    "Could not decrypt field %s; treating as not configured",
                    name,
                    extra=_log_extra(record.organization_id, definition.key),
                )
            continue
        values[name] = str(stored)
    return values


def _merge(defaults: dict[str, str], custom: dict[str, str]) -> dict[str, str]:
    merged = dict(defaults)
    merged.update({name: value for name, value in custom.items() if value and value.strip()})
    return merged


def get_effective_settings(
    db: Session,
    org_id: UUID,
    key: IntegrationKey,
    *,
    env_defaults: EnvDefaults | None = None,
) -> dict[str, str]:
    """
    Decrypted effective configuration (organization over environment).

    Internal use only (connection tests, live clients). Never return this
    from an API route.
    """
    definition = get_definition(key)
    env_defaults = env_defaults or get_env_defaults()
    record = _get_record(db, org_id, definition.key)
    custom = _decrypt_record(definition, record) if record else {}
    return _merge(env_defaults.for_integration(definition.key), custom)


def has_integration_settings(db: Session, org_id: UUID, key: IntegrationKey) -> bool:
    """True iff the organization has its own record (env defaults ignored)."""
    definition = get_definition(key)
    return _get_record(db, org_id, definition.key) is not None


def _state_of(record: IntegrationSetting | None) -> IntegrationState:
    if record is None:
        return IntegrationState.UNCONFIGURED
    if record.last_verification_ok is None:
        return IntegrationState.CONFIGURED
    return IntegrationState.VERIFIED if record.last_verification_ok else IntegrationState.FAILED


def get_integration_state(db: Session, org_id: UUID, key: IntegrationKey) -> IntegrationState:
    definition = get_definition(key)
    return _state_of(_get_record(db, org_id, definition.key))


def get_masked_settings(
    db: Session,
    org_id: UUID,
    key: IntegrationKey,
    *,
    env_defaults: EnvDefaults | None = None,
) -> MaskedSettings:
    """
    Effective settings with every secret masked.

    Each field reports where its value came from; a field with no value
    anywhere is ``not_configured`` with ``value=None``.
    """
    definition = get_definition(key)
    env_defaults = env_defaults or get_env_defaults()
    record = _get_record(db, org_id, definition.key)
    custom = _decrypt_record(definition, record) if record else {}
    defaults = env_defaults.for_integration(definition.key)

    fields: dict[str, MaskedField] = {}
    for spec in definition.fields:
        if custom.get(spec.key, "").strip():
            raw, source = custom[spec.key], FieldSource.ORGANIZATION
        elif defaults.get(spec.key, "").strip():
            raw, source = defaults[spec.key], FieldSource.ENVIRONMENT
        else:
            fields[spec.key] = MaskedField(
                value=None, source=FieldSource.NOT_CONFIGURED, secret=spec.secret
            )
            continue
        fields[spec.key] = MaskedField(
            value=mask_secret(raw) if spec.secret else raw,
            source=source,
            secret=spec.secret,
        )

    state = _state_of(record)
    return MaskedSettings(
        integration=definition.key,
        name=definition.name,
        has_custom=record is not None,
        state=state,
        last_verified_at=record.last_verified_at if state == IntegrationState.VERIFIED else None,
        fields=fields,
    )


def get_integration_status(
    db: Session, org_id: UUID, *, env_defaults: EnvDefaults | None = None
) -> list[IntegrationStatus]:
    """Overview of every integration for the settings page."""
    env_defaults = env_defaults or get_env_defaults()
    records = {
        record.integration_key: record
        for record in db.scalars(
            select(IntegrationSetting).where(IntegrationSetting.organization_id == org_id)
        )
    }
    return [
        IntegrationStatus(
            integration=key,
            name=definition.name,
            has_custom=key.value in records,
            has_env_default=env_defaults.has_defaults(key),
            state=_state_of(records.get(key.value)),
        )
        for key, definition in INTEGRATIONS.items()
    ]


def get_verified_settings(org_id: UUID, key: IntegrationKey) -> dict[str, str] | None:
    """Decrypted settings last verified by a connection test, if still current."""
    definition = get_definition(key)
    return verification_cache.get_verified(org_id, definition.key)


# =============================================================================
# Writes
# =============================================================================


def _encrypt_values(definition: IntegrationDefinition, values: dict[str, str]) -> dict[str, str]:
    codec = get_codec()
    secret_fields = definition.secret_fields
    return {
        name: codec.encrypt(value) if name in secret_fields else value
        for name, value in values.items()
    }


def _persist(
    db: Session,
    auth: AuthContext,
    definition: IntegrationDefinition,
    record: IntegrationSetting | None,
    values: dict[str, str],
) -> IntegrationSetting:
    """Write the complete record in one commit; nothing is kept on failure."""
    stored = _encrypt_values(definition, values)
    now = _utcnow()
    try:
        if record is None:
            record = IntegrationSetting(
                organization_id=auth.organization_id,
                integration_key=definition.key.value,
                values=stored,
                current_version=1,
                updated_by_user_id=auth.user_id,
                created_at=now,
                updated_at=now,
            )
            db.add(record)
        else:
            record.values = stored
            record.current_version = IntegrationSetting.current_version + 1
            record.last_verified_at = None
            record.last_verification_ok = None
            record.last_verification_message = None
            record.updated_by_user_id = auth.user_id
            record.updated_at = now
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to save integration settings",
            extra=_log_extra(auth.organization_id, definition.key, auth.user_id),
        )
        raise PersistenceError("Failed to save settings")
    db.refresh(record)
    return record


def _audit(
    db: Session,
    auth: AuthContext,
    audit_context: AuditContext | None,
    action: AuditAction,
    definition: IntegrationDefinition,
    description: str,
    metadata: dict,
) -> None:
    audit_service.record(
        db,
        AuditEntry(
            action=action,
            entity_type=AuditEntityType.INTEGRATION,
            entity_id=definition.key.value,
            description=description,
            metadata={"integration": definition.key.value, **metadata},
        ),
        audit_context or audit_service.build_audit_context(auth),
    )


def set_integration_settings(
    db: Session,
    auth: AuthContext,
    key: IntegrationKey,
    fields: dict,
    *,
    partial: bool = False,
    audit_context: AuditContext | None = None,
    env_defaults: EnvDefaults | None = None,
) -> MaskedSettings:
    """
    Save the organization's settings for one integration.

    The caller must already hold an admin AuthContext. By default the record
    is replaced as a whole; ``partial=True`` keeps stored values for fields
    that are omitted or blank (a form that leaves masked secrets untouched).
    Blank values are dropped so the field falls back to environment defaults.

    Raises:
        SettingsValidationError: unknown fields or invalid values
        PersistenceError: the record could not be written
    """
    definition = get_definition(key)
    values, errors = normalize_fields(definition, fields)

    record = _get_record(db, auth.organization_id, definition.key)
    if partial and record is not None:
        values = {**_decrypt_record(definition, record), **values}

    errors.update(validate_values(definition, values))
    if errors:
        raise SettingsValidationError("Invalid settings", errors=errors)

    _persist(db, auth, definition, record, values)
    verification_cache.invalidate(auth.organization_id, definition.key)
    logger.info(
        "Integration settings saved",
        extra=_log_extra(auth.organization_id, definition.key, auth.user_id),
    )

    _audit(
        db,
        auth,
        audit_context,
        AuditAction.INTEGRATION_SETTINGS_UPDATED,
        definition,
        f"Updated {definition.name} settings",
        {"fields": sorted(values), "partial": partial},
    )
    return get_masked_settings(db, auth.organization_id, definition.key, env_defaults=env_defaults)


def import_env_defaults(
    db: Session,
    auth: AuthContext,
    key: IntegrationKey,
    *,
    audit_context: AuditContext | None = None,
    env_defaults: EnvDefaults | None = None,
) -> MaskedSettings:
    """Copy the environment defaults into an organization record."""
    definition = get_definition(key)
    env_defaults = env_defaults or get_env_defaults()
    if not env_defaults.has_defaults(definition.key):
        raise SettingsValidationError("No system defaults configured for this integration")

    values, errors = normalize_fields(definition, env_defaults.for_integration(definition.key))
    errors.update(validate_values(definition, values))
    if errors:
        raise SettingsValidationError("System defaults are invalid", errors=errors)

    record = _get_record(db, auth.organization_id, definition.key)
    _persist(db, auth, definition, record, values)
    verification_cache.invalidate(auth.organization_id, definition.key)
    logger.info(
        "Integration settings imported from environment",
        extra=_log_extra(auth.organization_id, definition.key, auth.user_id),
    )

    _audit(
        db,
        auth,
        audit_context,
        AuditAction.INTEGRATION_SETTINGS_UPDATED,
        definition,
        f"Imported {definition.name} settings from system defaults",
        {"fields": sorted(values), "source": "environment"},
    )
    return get_masked_settings(db, auth.organization_id, definition.key, env_defaults=env_defaults)


def delete_integration_settings(
    db: Session,
    auth: AuthContext,
    key: IntegrationKey,
    *,
    audit_context: AuditContext | None = None,
) -> bool:
    """
    Remove the organization's record, reverting to environment defaults.

    Deleting a missing record is a no-op success. Returns whether a record
    existed; every call is audited.
    """
    definition = get_definition(key)
    record = _get_record(db, auth.organization_id, definition.key)
    existed = record is not None
    if record is not None:
        try:
            db.delete(record)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to clear integration settings",
                extra=_log_extra(auth.organization_id, definition.key, auth.user_id),
            )
            raise PersistenceError("Failed to clear settings")

    verification_cache.invalidate(auth.organization_id, definition.key)
    _audit(
        db,
        auth,
        audit_context,
        AuditAction.INTEGRATION_SETTINGS_CLEARED,
        definition,
        f"Cleared {definition.name} settings",
        {"existed": existed},
    )
    return existed


# =============================================================================
# Connection test
# =============================================================================


def _missing_required(definition: IntegrationDefinition, values: dict[str, str]) -> list[str]:
    required = definition.required_fields
    if definition.key == IntegrationKey.STORAGE and values.get("provider") not in (None, "local"):
        required = tuple(
            spec
            for spec in definition.fields
            if spec.required or spec.key in ("bucket", "access_key_id", "secret_access_key")
        )
    return [spec.label for spec in required if not values.get(spec.key)]


async def _run_check(
    definition: IntegrationDefinition,
    values: dict[str, str],
    transport: httpx.AsyncBaseTransport | None,
) -> tuple[ConnectionOutcome, str]:
    check = PROVIDER_CHECKS[definition.key]
    timeout = settings.INTEGRATION_TEST_TIMEOUT_SECONDS
    try:
        with anyio.fail_after(timeout):
            message = await check(values, transport=transport)
    except TimeoutError:
        return ConnectionOutcome.UNREACHABLE, (
            f"{definition.name} did not respond within {timeout:g} seconds"
        )
    except ProviderRejected as exc:
        return ConnectionOutcome.REJECTED, exc.message
    except ProviderUnreachable as exc:
        return ConnectionOutcome.UNREACHABLE, exc.message
    except Exception:
        logger.exception("Unexpected error during %s connection test", definition.key.value)
        return ConnectionOutcome.UNREACHABLE, f"Could not reach {definition.name}"
    return ConnectionOutcome.VERIFIED, message


def _store_verification(
    db: Session,
    record_id: UUID,
    version: int,
    ok: bool,
    message: str,
) -> bool:
    """Record the test outcome unless the settings were saved again meanwhile."""
    try:
        result = db.execute(
            update(IntegrationSetting)
            .where(
                IntegrationSetting.id == record_id,
                IntegrationSetting.current_version == version,
            )
            .values(
                last_verified_at=_utcnow(),
                last_verification_ok=ok,
                last_verification_message=message[:_MAX_MESSAGE_LENGTH],
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store connection test outcome")
        return False
    return result.rowcount == 1


async def test_connection(
    db: Session,
    auth: AuthContext,
    key: IntegrationKey,
    *,
    audit_context: AuditContext | None = None,
    env_defaults: EnvDefaults | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ConnectionTestResult:
    """
    Run a live handshake with the effective credentials.

    Provider failures come back as data, never raised. On success the
    decrypted settings are published to the verification cache; a save or
    clear that lands during the handshake fences the result off, so the
    cache never reports the new credentials as verified by a test of the
    old ones. Raises only for unknown integration keys.
    """
    definition = get_definition(key)
    org_id = auth.organization_id
    generation = verification_cache.begin(org_id, definition.key)

    record = _get_record(db, org_id, definition.key)
    record_id = record.id if record else None
    version = record.current_version if record else None
    values = get_effective_settings(db, org_id, definition.key, env_defaults=env_defaults)

    missing = _missing_required(definition, values)
    try:
        if missing:
            outcome = ConnectionOutcome.INCOMPLETE
            message = f"Missing required settings: {', '.join(missing)}"
        else:
            outcome, message = await _run_check(definition, values, transport)
    except BaseException:
        # Cancelled mid-handshake: never leave this generation verified
        verification_cache.discard(org_id, definition.key, generation)
        raise

    valid = outcome == ConnectionOutcome.VERIFIED
    if valid:
        published = verification_cache.mark_verified(org_id, definition.key, generation, values)
        if not published:
            message = "Connection succeeded, but the settings changed during the test; run it again"
        elif record_id is not None:
            _store_verification(db, record_id, version, True, message)
    else:
        verification_cache.discard(org_id, definition.key, generation)
        if record_id is not None:
            _store_verification(db, record_id, version, False, message)
        logger.warning(
            "Connection test failed: %s",
            outcome.value,
            extra=_log_extra(org_id, definition.key, auth.user_id),
        )

    _audit(
        db,
        auth,
        audit_context,
        AuditAction.INTEGRATION_CONNECTION_TESTED if valid else AuditAction.INTEGRATION_CONNECTION_FAILED,
        definition,
        f"{definition.name} connection {'verified' if valid else 'test failed'}",
        {"outcome": outcome.value},
    )
    return ConnectionTestResult(valid=valid, message=message, kind=outcome)
