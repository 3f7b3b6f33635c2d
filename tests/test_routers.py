"""HTTP-level tests: authentication, authorization, CSRF and masking at the edge."""

import pytest
from sqlalchemy import select

from pms_api.core.deps import ORG_COOKIE_NAME, ORG_HEADER
from pms_api.db.enums import AuditAction, IntegrationKey, Role
from pms_api.db.models import AuditLog
from pms_api.services import integration_providers


SMTP_BODY = {
    "fields": {
        "host": "smtp.acme-mail.example.com",
        "port": "587",
        "user": "acme-mailer",
        "password": "router-secret-password-42",
    }
}


@pytest.mark.asyncio
async def test_health(client, db):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_anonymous_gets_401(client):
    """Requests without a session cookie are unauthenticated."""
    response = await client.get("/integrations/")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_garbage_session_cookie_gets_401(client):
    client.cookies.set("pms_session", "not-a-jwt")
    response = await client.get("/audit/")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_staff_gets_generic_403(client, login, make_member):
    """Insufficient role gets the same generic 403."""
    login(client, make_member(Role.STAFF))

    response = await client.get("/integrations/smtp")

    assert response.status_code == 403
    assert response.json()["detail"] == "Not authorized"


@pytest.mark.asyncio
async def test_user_without_org_gets_same_403(client, login, make_user):
    login(client, make_user(legacy_role="admin"))

    response = await client.get("/integrations/smtp")

    assert response.status_code == 403
    assert response.json()["detail"] == "Not authorized"


@pytest.mark.asyncio
async def test_mutation_requires_csrf_header(client, login, admin):
    """Mutating requests need the X-Requested-With header."""
    login(client, admin)

    response = await client.put(
        "/integrations/smtp", json=SMTP_BODY, headers={"X-Requested-With": ""}
    )

    assert response.status_code == 403
    assert "CSRF" in response.json()["detail"]


@pytest.mark.asyncio
async def test_put_then_get_is_masked(client, login, admin, db, org):
    """Responses are masked and the save is audited."""
    login(client, admin)

    saved = await client.put("/integrations/smtp", json=SMTP_BODY)
    fetched = await client.get("/integrations/smtp")

    assert saved.status_code == 200
    assert fetched.status_code == 200
    assert "router-secret-password-42" not in saved.text
    assert "router-secret-password-42" not in fetched.text
    body = fetched.json()
    assert body["has_custom"] is True
    assert body["fields"]["password"]["source"] == "organization"
    assert body["fields"]["password"]["value"].endswith("d-42")

    log = db.scalar(select(AuditLog))
    assert log.action == AuditAction.INTEGRATION_SETTINGS_UPDATED.value
    assert log.organization_id == org.id
    assert log.ip_address is not None


@pytest.mark.asyncio
async def test_invalid_fields_get_422(client, login, admin):
    login(client, admin)

    response = await client.put(
        "/integrations/smtp", json={"fields": {"port": "smtp", "bogus": "x"}}
    )

    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert set(errors) == {"port", "bogus"}


@pytest.mark.asyncio
async def test_unknown_integration_is_404(client, login, admin):
    login(client, admin)
    response = await client.get("/integrations/fax")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_reports_whether_record_existed(client, login, admin):
    login(client, admin)
    await client.put("/integrations/smtp", json=SMTP_BODY)

    first = await client.delete("/integrations/smtp")
    second = await client.delete("/integrations/smtp")

    assert first.json() == {"deleted": True}
    assert second.status_code == 200
    assert second.json() == {"deleted": False}


@pytest.mark.asyncio
async def test_connection_test_returns_result_as_data(
    client, login, admin, monkeypatch
):
    """A failed connection test is a 200 with the failure as data."""
    async def reject(values, *, transport=None):
        raise integration_providers.ProviderRejected("SMTP server refused the login: invalid credentials")

    monkeypatch.setitem(integration_providers.PROVIDER_CHECKS, IntegrationKey.SMTP, reject)
    login(client, admin)

    response = await client.post("/integrations/smtp/test")

    assert response.status_code == 200
    assert response.json() == {
        "valid": False,
        "message": "SMTP server refused the login: invalid credentials",
        "kind": "rejected",
    }


@pytest.mark.asyncio
async def test_status_and_catalogue(client, login, admin):
    login(client, admin)

    status = await client.get("/integrations/")
    catalogue = await client.get("/integrations/catalogue")

    assert {item["integration"] for item in status.json()} == {k.value for k in IntegrationKey}
    smtp = next(item for item in catalogue.json() if item["integration"] == "smtp")
    password = next(field for field in smtp["fields"] if field["key"] == "password")
    assert password["secret"] is True


@pytest.mark.asyncio
async def test_import_env_endpoint(client, login, admin):
    login(client, admin)

    imported = await client.post("/integrations/smtp/import-env")
    missing = await client.post("/integrations/oauth_google/import-env")

    assert imported.status_code == 200
    assert imported.json()["fields"]["host"]["source"] == "organization"
    assert missing.status_code == 422


@pytest.mark.asyncio
async def test_audit_lists_only_active_org_entries(
    client, login, admin, make_org, make_member, auth_for, db
):
    """The audit list only shows the active organization's entries."""
    from pms_api.schemas.audit import AuditEntry
    from pms_api.services import audit_service

    other_org = make_org("Other")
    other_admin = make_member(Role.ADMIN, other_org)
    audit_service.record(
        db,
        AuditEntry(action=AuditAction.PROPERTY_CREATED, description="elsewhere"),
        audit_service.build_audit_context(auth_for(other_admin, other_org, Role.ADMIN)),
    )
    login(client, admin)
    await client.put("/integrations/smtp", json=SMTP_BODY)

    response = await client.get("/audit/")

    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 1
    assert body["items"][0]["action"] == "integration.settings_updated"
    assert body["items"][0]["action_label"] == "Integration settings updated"


@pytest.mark.asyncio
async def test_audit_filter_by_action(client, login, admin):
    login(client, admin)
    await client.put("/integrations/smtp", json=SMTP_BODY)
    await client.delete("/integrations/smtp")

    response = await client.get(
        "/audit/", params={"action": "integration.settings_cleared"}
    )

    assert [item["action"] for item in response.json()["items"]] == [
        "integration.settings_cleared"
    ]


@pytest.mark.asyncio
async def test_manager_cannot_view_audit(client, login, make_member):
    login(client, make_member(Role.MANAGER))
    response = await client.get("/audit/")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_context_lists_memberships(client, login, admin, org):
    login(client, admin)

    response = await client.get("/organizations/context")

    body = response.json()
    assert body["organization_id"] == str(org.id)
    assert body["role"] == "admin"
    assert body["needs_onboarding"] is False


@pytest.mark.asyncio
async def test_switch_sets_cookie(client, login, make_org, make_user, add_member):
    first = make_org("First")
    second = make_org("Second")
    user = make_user()
    add_member(user, first, Role.OWNER)
    add_member(user, second, Role.STAFF)
    login(client, user)

    response = await client.post(
        "/organizations/switch", json={"organization_id": str(second.id)}
    )

    assert response.status_code == 200
    assert response.json()["organization_id"] == str(second.id)
    assert response.json()["role"] == "staff"
    assert f"{ORG_COOKIE_NAME}={second.id}" in response.headers["set-cookie"]


@pytest.mark.asyncio
async def test_switch_to_foreign_org_forbidden(client, login, admin, make_org):
    other = make_org("Other")
    login(client, admin)

    response = await client.post(
        "/organizations/switch", json={"organization_id": str(other.id)}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_org_header_selects_membership(
    client, login, make_org, make_user, add_member
):
    """The org header picks which membership's role applies."""
    first = make_org("First")
    second = make_org("Second")
    user = make_user()
    add_member(user, first, Role.STAFF)
    add_member(user, second, Role.ADMIN)
    login(client, user)

    as_staff = await client.get("/audit/", headers={ORG_HEADER: str(first.id)})
    as_admin = await client.get("/audit/", headers={ORG_HEADER: str(second.id)})

    assert as_staff.status_code == 403
    assert as_admin.status_code == 200


@pytest.mark.asyncio
async def test_member_management(client, login, owner, make_member):
    """Promote, remove, re-remove and self-removal over HTTP."""
    staff = make_member(Role.STAFF)
    login(client, owner)

    promoted = await client.patch(
        f"/organizations/members/{staff.id}", json={"role": "manager"}
    )
    removed = await client.delete(f"/organizations/members/{staff.id}")
    again = await client.delete(f"/organizations/members/{staff.id}")
    self_removal = await client.delete(f"/organizations/members/{owner.id}")

    assert promoted.json()["role"] == "manager"
    assert removed.status_code == 204
    assert again.status_code == 404
    assert self_removal.status_code == 409
