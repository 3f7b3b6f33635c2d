"""
Integration catalogue - fields, secrecy and save-time validation per integration.

Every field must declare ``secret=`` explicitly; secret fields are encrypted at
rest and masked on read. Field values are stored as strings and normalized
per ``kind`` on save.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import EmailStr, TypeAdapter, ValidationError

from pms_api.core.encryption import MASK_CHAR
from pms_api.db.enums import FieldKind, IntegrationKey
from pms_api.services.errors import UnknownIntegrationError


STORAGE_PROVIDERS = ("local", "s3", "r2", "do_spaces")
_ENDPOINT_PROVIDERS = ("r2", "do_spaces")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")

_email_adapter = TypeAdapter(EmailStr)


@dataclass(frozen=True, kw_only=True)
class IntegrationField:
    """One configuration field. ``secret`` has no default on purpose."""

    key: str
    label: str
    secret: bool
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    env_var: str | None = None
    help_text: str | None = None
    choices: tuple[str, ...] | None = None


Validator = Callable[[dict[str, str]], dict[str, str]]


@dataclass(frozen=True, kw_only=True)
class IntegrationDefinition:
    key: IntegrationKey
    name: str
    fields: tuple[IntegrationField, ...]
    # Field whose env value decides "has system defaults"
    primary_field: str
    validator: Validator | None = None
    field_map: dict[str, IntegrationField] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_map", {f.key: f for f in self.fields})
        if self.primary_field not in self.field_map:
            raise RuntimeError(f"{self.key.value}: primary field {self.primary_field} is not declared")

    @property
    def secret_fields(self) -> frozenset[str]:
        return frozenset(f.key for f in self.fields if f.secret)

    @property
    def required_fields(self) -> tuple[IntegrationField, ...]:
        return tuple(f for f in self.fields if f.required)


# =============================================================================
# Cross-field validators
# =============================================================================


def _validate_stripe(values: dict[str, str]) -> dict[str, str]:
    errors: dict[str, str] = {}
    prefixes = {
        "secret_key": ("sk_", "Secret key must start with sk_"),
        "publishable_key": ("pk_", "Publishable key must start with pk_"),
        "webhook_secret": ("whsec_", "Webhook secret must start with whsec_"),
    }
    for key, (prefix, message) in prefixes.items():
        value = values.get(key)
        if value and not value.startswith(prefix):
            errors[key] = message
    return errors


def _validate_storage(values: dict[str, str]) -> dict[str, str]:
    errors: dict[str, str] = {}
    provider = values.get("provider")
    if not provider or provider == "local":
        return errors
    if not values.get("bucket"):
        errors["bucket"] = "Bucket name is required for cloud storage"
    if not values.get("access_key_id") or not values.get("secret_access_key"):
        errors["access_key_id"] = "Access credentials are required for cloud storage"
    if provider in _ENDPOINT_PROVIDERS and not values.get("endpoint"):
        errors["endpoint"] = "Custom endpoint is required for R2 and DigitalOcean Spaces"
    return errors


# =============================================================================
# Catalogue
# =============================================================================


INTEGRATIONS: dict[IntegrationKey, IntegrationDefinition] = {
    IntegrationKey.STRIPE: IntegrationDefinition(
        key=IntegrationKey.STRIPE,
        name="Stripe Payments",
        primary_field="secret_key",
        validator=_validate_stripe,
        fields=(
            IntegrationField(
                key="secret_key",
                label="Secret Key",
                secret=True,
                required=True,
                env_var="STRIPE_SECRET_KEY",
                help_text="Your Stripe secret key (starts with sk_)",
            ),
            IntegrationField(
                key="publishable_key",
                label="Publishable Key",
                secret=False,
                required=True,
                env_var="STRIPE_PUBLISHABLE_KEY",
                help_text="Your Stripe publishable key (starts with pk_)",
            ),
            IntegrationField(
                key="webhook_secret",
                label="Webhook Secret",
                secret=True,
                env_var="STRIPE_WEBHOOK_SECRET",
                help_text="For verifying webhook signatures",
            ),
        ),
    ),
    IntegrationKey.SMTP: IntegrationDefinition(
        key=IntegrationKey.SMTP,
        name="Email (SMTP)",
        primary_field="user",
        fields=(
            IntegrationField(
                key="host", label="SMTP Host", secret=False, required=True, env_var="SMTP_HOST"
            ),
            IntegrationField(
                key="port",
                label="Port",
                secret=False,
                kind=FieldKind.INTEGER,
                required=True,
                env_var="SMTP_PORT",
                help_text="Usually 587 (TLS) or 465 (SSL)",
            ),
            IntegrationField(
                key="secure",
                label="Use SSL",
                secret=False,
                kind=FieldKind.BOOLEAN,
                env_var="SMTP_SECURE",
                help_text="Enable for port 465",
            ),
            IntegrationField(
                key="user", label="Username", secret=False, required=True, env_var="SMTP_USER"
            ),
            IntegrationField(
                key="password", label="Password", secret=True, required=True, env_var="SMTP_PASS"
            ),
            IntegrationField(
                key="from_address",
                label="From Address",
                secret=False,
                kind=FieldKind.EMAIL,
                env_var="EMAIL_FROM",
            ),
            IntegrationField(
                key="app_name", label="App Name", secret=False, env_var="APP_NAME"
            ),
        ),
    ),
    IntegrationKey.OAUTH_GOOGLE: IntegrationDefinition(
        key=IntegrationKey.OAUTH_GOOGLE,
        name="Google OAuth",
        primary_field="client_id",
        fields=(
            IntegrationField(
                key="client_id",
                label="Client ID",
                secret=False,
                required=True,
                env_var="AUTH_GOOGLE_ID",
            ),
            IntegrationField(
                key="client_secret",
                label="Client Secret",
                secret=True,
                required=True,
                env_var="AUTH_GOOGLE_SECRET",
            ),
        ),
    ),
    IntegrationKey.OAUTH_GITHUB: IntegrationDefinition(
        key=IntegrationKey.OAUTH_GITHUB,
        name="GitHub OAuth",
        primary_field="client_id",
        fields=(
            IntegrationField(
                key="client_id",
                label="Client ID",
                secret=False,
                required=True,
                env_var="AUTH_GITHUB_ID",
            ),
            IntegrationField(
                key="client_secret",
                label="Client Secret",
                secret=True,
                required=True,
                env_var="AUTH_GITHUB_SECRET",
            ),
        ),
    ),
    IntegrationKey.STORAGE: IntegrationDefinition(
        key=IntegrationKey.STORAGE,
        name="File Storage",
        primary_field="bucket",
        validator=_validate_storage,
        fields=(
            IntegrationField(
                key="provider",
                label="Provider",
                secret=False,
                kind=FieldKind.CHOICE,
                required=True,
                env_var="STORAGE_PROVIDER",
                choices=STORAGE_PROVIDERS,
            ),
            IntegrationField(key="bucket", label="Bucket", secret=False, env_var="STORAGE_BUCKET"),
            IntegrationField(key="region", label="Region", secret=False, env_var="STORAGE_REGION"),
            IntegrationField(
                key="endpoint",
                label="Endpoint",
                secret=False,
                env_var="STORAGE_ENDPOINT",
                help_text="Required for R2 and DigitalOcean Spaces",
            ),
            IntegrationField(
                key="access_key_id",
                label="Access Key ID",
                secret=False,
                env_var="STORAGE_ACCESS_KEY_ID",
            ),
            IntegrationField(
                key="secret_access_key",
                label="Secret Access Key",
                secret=True,
                env_var="STORAGE_SECRET_ACCESS_KEY",
            ),
            IntegrationField(
                key="public_url",
                label="Public URL",
                secret=False,
                env_var="STORAGE_PUBLIC_URL",
            ),
        ),
    ),
}

_missing = set(IntegrationKey) - set(INTEGRATIONS)
if _missing:
    raise RuntimeError(f"Integrations missing from catalogue: {sorted(k.value for k in _missing)}")


def get_definition(key: IntegrationKey | str) -> IntegrationDefinition:
    """Look up an integration; unknown keys raise UnknownIntegrationError."""
    try:
        return INTEGRATIONS[IntegrationKey(key)]
    except (ValueError, KeyError):
        raise UnknownIntegrationError(f"Unknown integration: {key}")


# =============================================================================
# Value normalization
# =============================================================================


def normalize_value(spec: IntegrationField, raw: Any) -> str:
    """Return the stored string form of ``raw`` or raise ValueError."""
    if spec.kind == FieldKind.BOOLEAN:
        if isinstance(raw, bool):
            return "true" if raw else "false"
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return "true"
        if text in _FALSE_VALUES:
            return "false"
        raise ValueError("Must be true or false")

    text = str(raw).strip()
    if spec.kind == FieldKind.INTEGER:
        if isinstance(raw, bool):
            raise ValueError("Must be a whole number")
        try:
            number = int(text)
        except ValueError:
            raise ValueError("Must be a whole number")
        if spec.key == "port" and not 1 <= number <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return str(number)
    if spec.kind == FieldKind.EMAIL:
        try:
            _email_adapter.validate_python(text)
        except ValidationError:
            raise ValueError("Invalid from address format")
        return text
    if spec.kind == FieldKind.CHOICE and spec.choices and text not in spec.choices:
        raise ValueError(f"Must be one of: {', '.join(spec.choices)}")
    return text


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_fields(
    definition: IntegrationDefinition, fields: dict[str, Any]
) -> tuple[dict[str, str], dict[str, str]]:
    """
    Normalize submitted plaintext values.

    Returns ``(values, errors)``. Blank values (and echoed masks) are dropped so the field falls
    back to environment defaults; unknown field names are errors.
    """
    values: dict[str, str] = {}
    errors: dict[str, str] = {}
    for name, raw in fields.items():
        spec = definition.field_map.get(name)
        if spec is None:
            errors[name] = "Unknown field"
            continue
        if is_blank(raw):
            continue
        # A masked secret echoed back by a form means "unchanged"
        if spec.secret and str(raw).startswith(MASK_CHAR):
            continue
        try:
            values[name] = normalize_value(spec, raw)
        except ValueError as exc:
            errors[name] = str(exc)
    return values, errors


def validate_values(definition: IntegrationDefinition, values: dict[str, str]) -> dict[str, str]:
    """Cross-field checks on the complete record about to be stored."""
    if definition.validator is None:
        return {}
    return definition.validator(values)
