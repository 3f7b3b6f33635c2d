"""
Live connection checks per integration.

Each check takes the decrypted effective values and either returns a
success message or raises ProviderRejected (the provider answered and refused
the credentials) / ProviderUnreachable (network failure, provider outage).
Messages never echo credential values.

Blocking clients (smtplib, boto3) run in a worker thread that is abandoned
if the caller is cancelled or times out.
"""

import smtplib
import ssl
from typing import Awaitable, Callable

import anyio
import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from pms_api.core.config import settings
from pms_api.db.enums import IntegrationKey


STRIPE_API_BASE = "https://api.stripe.com/v1"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"

# Deliberately invalid authorization code: a provider that recognizes the
# client answers "bad code", one that does not answers "bad client".
_PROBE_CODE = "pms-connection-test"
_PROBE_REDIRECT_URI = "http://localhost/oauth/callback"

_INVALID_CREDENTIALS = "invalid credentials"


class ProviderError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderRejected(ProviderError):
    """Provider reachable, credentials refused."""


class ProviderUnreachable(ProviderError):
    """Provider could not be reached or failed on its side."""


ProviderCheck = Callable[..., Awaitable[str]]


def _timeout() -> float:
    return settings.INTEGRATION_TEST_TIMEOUT_SECONDS


def _raise_for_server_error(response: httpx.Response, provider: str) -> None:
    if response.status_code >= 500:
        raise ProviderUnreachable(f"{provider} is unavailable (HTTP {response.status_code})")


# =============================================================================
# Stripe
# =============================================================================


async def check_stripe(
    values: dict[str, str], *, transport: httpx.AsyncBaseTransport | None = None
) -> str:
    """Fetch the account balance with the secret key."""
    try:
        async with httpx.AsyncClient(timeout=_timeout(), transport=transport) as client:
            response = await client.get(
                f"{STRIPE_API_BASE}/balance",
                auth=(values["secret_key"], ""),
            )
    except httpx.TimeoutException:
        raise ProviderUnreachable("Stripe did not respond in time")
    except httpx.TransportError:
        raise ProviderUnreachable("Could not connect to Stripe")

    _raise_for_server_error(response, "Stripe")
    if response.status_code == 401:
        raise ProviderRejected(f"Stripe rejected the secret key: {_INVALID_CREDENTIALS}")
    if response.status_code == 403:
        raise ProviderRejected("Stripe key lacks permission to read the account balance")
    if response.status_code != 200:
        raise ProviderRejected(f"Stripe API error: {response.status_code}")
    return "Stripe connection verified"


# =============================================================================
# SMTP
# =============================================================================


def _smtp_handshake(values: dict[str, str], timeout: float) -> None:
    host = values["host"]
    port = int(values.get("port") or 587)
    secure = values.get("secure") == "true"
    context = ssl.create_default_context()

    if secure:
        server = smtplib.SMTP_SSL(host, port, timeout=timeout, context=context)
    else:
        server = smtplib.SMTP(host, port, timeout=timeout)
    with server:
        if not secure:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=context)
                server.ehlo()
        server.login(values["user"], values["password"])


async def check_smtp(
    values: dict[str, str], *, transport: httpx.AsyncBaseTransport | None = None
) -> str:
    """Connect, upgrade to TLS when offered, and log in."""
    timeout = _timeout()
    try:
        await anyio.to_thread.run_sync(
            lambda: _smtp_handshake(values, timeout), abandon_on_cancel=True
        )
    except smtplib.SMTPAuthenticationError:
        raise ProviderRejected(f"SMTP server refused the login: {_INVALID_CREDENTIALS}")
    except smtplib.SMTPServerDisconnected:
        raise ProviderUnreachable("SMTP server closed the connection")
    except smtplib.SMTPNotSupportedError:
        raise ProviderRejected("SMTP server does not support authentication")
    except smtplib.SMTPException as exc:
        raise ProviderRejected(f"SMTP error: {exc.__class__.__name__}")
    except (OSError, ssl.SSLError):
        raise ProviderUnreachable("Could not connect to SMTP server")
    return "SMTP connection verified"


# =============================================================================
# OAuth providers
# =============================================================================


async def _post_token_exchange(
    url: str, data: dict[str, str], provider: str, transport: httpx.AsyncBaseTransport | None
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=_timeout(), transport=transport) as client:
            return await client.post(url, data=data, headers={"Accept": "application/json"})
    except httpx.TimeoutException:
        raise ProviderUnreachable(f"{provider} did not respond in time")
    except httpx.TransportError:
        raise ProviderUnreachable(f"Could not connect to {provider}")


def _error_code(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        error = payload.get("error")
        return str(error) if error else None
    return None


async def check_oauth_google(
    values: dict[str, str], *, transport: httpx.AsyncBaseTransport | None = None
) -> str:
    """Exchange a dummy code; "invalid_grant" means the client itself was accepted."""
    response = await _post_token_exchange(
        GOOGLE_TOKEN_URL,
        {
            "client_id": values["client_id"],
            "client_secret": values["client_secret"],
            "code": _PROBE_CODE,
            "grant_type": "authorization_code",
            "redirect_uri": _PROBE_REDIRECT_URI,
        },
        "Google",
        transport,
    )
    _raise_for_server_error(response, "Google")
    error = _error_code(response)
    if error in ("invalid_grant", "redirect_uri_mismatch"):
        return "Google OAuth client verified"
    if error in ("invalid_client", "unauthorized_client"):
        raise ProviderRejected(f"Google rejected the OAuth client: {_INVALID_CREDENTIALS}")
    raise ProviderRejected(f"Unexpected Google response: {error or response.status_code}")


async def check_oauth_github(
    values: dict[str, str], *, transport: httpx.AsyncBaseTransport | None = None
) -> str:
    """Exchange a dummy code; "bad_verification_code" means the client was accepted."""
    response = await _post_token_exchange(
        GITHUB_TOKEN_URL,
        {
            "client_id": values["client_id"],
            "client_secret": values["client_secret"],
            "code": _PROBE_CODE,
        },
        "GitHub",
        transport,
    )
    _raise_for_server_error(response, "GitHub")
    error = _error_code(response)
    if error == "bad_verification_code":
        return "GitHub OAuth client verified"
    if error == "incorrect_client_credentials" or response.status_code in (401, 404):
        raise ProviderRejected(f"GitHub rejected the OAuth client: {_INVALID_CREDENTIALS}")
    raise ProviderRejected(f"Unexpected GitHub response: {error or response.status_code}")


# =============================================================================
# Object storage
# =============================================================================

_STORAGE_AUTH_ERRORS = {
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidToken",
}
_STORAGE_MISSING_BUCKET = {"404", "NoSuchBucket"}


def _get_s3_client(values: dict[str, str], timeout: float):
    """Get boto3 S3 client for the organization's bucket."""
    return boto3.client(
        "s3",
        region_name=values.get("region") or None,
        endpoint_url=values.get("endpoint") or None,
        aws_access_key_id=values.get("access_key_id"),
        aws_secret_access_key=values.get("secret_access_key"),
        config=Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"max_attempts": 1},
        ),
    )


def _head_bucket(values: dict[str, str], timeout: float) -> None:
    _get_s3_client(values, timeout).head_bucket(Bucket=values["bucket"])


async def check_storage(
    values: dict[str, str], *, transport: httpx.AsyncBaseTransport | None = None
) -> str:
    """HEAD the configured bucket with the organization's keys."""
    if values.get("provider", "local") == "local":
        return "Local storage needs no credentials"

    timeout = _timeout()
    try:
        await anyio.to_thread.run_sync(
            lambda: _head_bucket(values, timeout), abandon_on_cancel=True
        )
    except ClientError as exc:
        code = str(exc.response.get("Error", {}).get("Code", ""))
        if code in _STORAGE_AUTH_ERRORS:
            raise ProviderRejected(f"Storage provider refused access: {_INVALID_CREDENTIALS}")
        if code in _STORAGE_MISSING_BUCKET:
            raise ProviderRejected("Bucket not found")
        raise ProviderRejected(f"Storage error: {code or 'unknown'}")
    except BotoCoreError:
        raise ProviderUnreachable("Could not connect to storage provider")
    return "Storage bucket reachable"


PROVIDER_CHECKS: dict[IntegrationKey, ProviderCheck] = {
    IntegrationKey.STRIPE: check_stripe,
    IntegrationKey.SMTP: check_smtp,
    IntegrationKey.OAUTH_GOOGLE: check_oauth_google,
    IntegrationKey.OAUTH_GITHUB: check_oauth_github,
    IntegrationKey.STORAGE: check_storage,
}
