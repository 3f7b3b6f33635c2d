"""Integrations router - per-organization third-party credentials.

Responses carry masked settings only. Every route requires admin
("integrations.manage"); mutations also require the CSRF header.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from pms_api.core.deps import get_db, require_csrf_header, require_permission
from pms_api.core.env_defaults import EnvDefaults, get_env_defaults
from pms_api.core.integration_registry import INTEGRATIONS, IntegrationDefinition, get_definition
from pms_api.schemas.auth import AuthContext
from pms_api.schemas.integrations import (
    ConnectionTestResult,
    IntegrationDefinitionRead,
    IntegrationFieldRead,
    IntegrationSettingsUpdate,
    IntegrationStatus,
    MaskedSettings,
)
from pms_api.services import audit_service, integration_settings_service
from pms_api.services.errors import (
    PersistenceError,
    SettingsValidationError,
    UnknownIntegrationError,
)

router = APIRouter(prefix="/integrations", tags=["Integrations"])

_MANAGE = "integrations.manage"


def _definition_or_404(key: str) -> IntegrationDefinition:
    try:
        return get_definition(key)
    except UnknownIntegrationError:
        raise HTTPException(status_code=404, detail="Integration not found")


def _validation_error(exc: SettingsValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": exc.message, "errors": exc.errors})


def _persistence_error() -> HTTPException:
    return HTTPException(status_code=503, detail="Failed to save settings")


@router.get("/", response_model=list[IntegrationStatus])
def list_integrations(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
    env_defaults: EnvDefaults = Depends(get_env_defaults),
) -> list[IntegrationStatus]:
    """Status overview of every integration for the active organization."""
    return integration_settings_service.get_integration_status(
        db, auth.organization_id, env_defaults=env_defaults
    )


@router.get("/catalogue", response_model=list[IntegrationDefinitionRead])
def list_catalogue(
    auth: AuthContext = Depends(require_permission(_MANAGE)),
) -> list[IntegrationDefinitionRead]:
    """Field definitions for rendering settings forms."""
    return [
        IntegrationDefinitionRead(
            integration=definition.key,
            name=definition.name,
            fields=[
                IntegrationFieldRead(
                    key=spec.key,
                    label=spec.label,
                    kind=spec.kind.value,
                    secret=spec.secret,
                    required=spec.required,
                    help_text=spec.help_text,
                    choices=list(spec.choices) if spec.choices else None,
                )
                for spec in definition.fields
            ],
        )
        for definition in INTEGRATIONS.values()
    ]


@router.get("/{key}", response_model=MaskedSettings)
def get_settings(
    key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
    env_defaults: EnvDefaults = Depends(get_env_defaults),
) -> MaskedSettings:
    definition = _definition_or_404(key)
    return integration_settings_service.get_masked_settings(
        db, auth.organization_id, definition.key, env_defaults=env_defaults
    )


@router.put(
    "/{key}",
    response_model=MaskedSettings,
    dependencies=[Depends(require_csrf_header)],
)
def save_settings(
    key: str,
    body: IntegrationSettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
    env_defaults: EnvDefaults = Depends(get_env_defaults),
) -> MaskedSettings:
    definition = _definition_or_404(key)
    try:
        return integration_settings_service.set_integration_settings(
            db,
            auth,
            definition.key,
            body.fields,
            partial=body.partial,
            audit_context=audit_service.build_audit_context(auth, request),
            env_defaults=env_defaults,
        )
    except SettingsValidationError as exc:
        raise _validation_error(exc)
    except PersistenceError:
        raise _persistence_error()


@router.delete("/{key}", dependencies=[Depends(require_csrf_header)])
def clear_settings(
    key: str,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
) -> dict[str, bool]:
    """Revert to system defaults. Clearing twice is not an error."""
    definition = _definition_or_404(key)
    try:
        existed = integration_settings_service.delete_integration_settings(
            db,
            auth,
            definition.key,
            audit_context=audit_service.build_audit_context(auth, request),
        )
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Failed to clear settings")
    return {"deleted": existed}


@router.post(
    "/{key}/test",
    response_model=ConnectionTestResult,
    dependencies=[Depends(require_csrf_header)],
)
async def run_connection_test(
    key: str,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
    env_defaults: EnvDefaults = Depends(get_env_defaults),
) -> ConnectionTestResult:
    """Live connection test with the effective credentials. Failures are data, not errors."""
    definition = _definition_or_404(key)
    return await integration_settings_service.test_connection(
        db,
        auth,
        definition.key,
        audit_context=audit_service.build_audit_context(auth, request),
        env_defaults=env_defaults,
    )


@router.post(
    "/{key}/import-env",
    response_model=MaskedSettings,
    dependencies=[Depends(require_csrf_header)],
)
def import_env(
    key: str,
    request: Request,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_permission(_MANAGE)),
    env_defaults: EnvDefaults = Depends(get_env_defaults),
) -> MaskedSettings:
    """Copy system defaults into this organization's own settings."""
    definition = _definition_or_404(key)
    try:
        return integration_settings_service.import_env_defaults(
            db,
            auth,
            definition.key,
            audit_context=audit_service.build_audit_context(auth, request),
            env_defaults=env_defaults,
        )
    except SettingsValidationError as exc:
        raise _validation_error(exc)
    except PersistenceError:
        raise _persistence_error()
