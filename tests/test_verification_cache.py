"""Tests for the process-wide verification cache."""

import threading
import uuid

import pytest

from pms_api.db.enums import IntegrationKey
from pms_api.services.verification_cache import VerificationCache


@pytest.fixture
def cache():
    return VerificationCache()


@pytest.fixture
def org_id():
    return uuid.uuid4()


def test_mark_verified_publishes_entry(cache, org_id):
    generation = cache.begin(org_id, IntegrationKey.SMTP)

    assert cache.mark_verified(org_id, IntegrationKey.SMTP, generation, {"password": "pw"})
    assert cache.is_verified(org_id, IntegrationKey.SMTP)
    assert cache.get_verified(org_id, IntegrationKey.SMTP) == {"password": "pw"}


def test_returned_values_are_copies(cache, org_id):
    """Neither the caller's dict nor a returned dict can change the entry."""
    generation = cache.begin(org_id, IntegrationKey.SMTP)
    values = {"password": "pw"}
    cache.mark_verified(org_id, IntegrationKey.SMTP, generation, values)

    values["password"] = "changed"
    cache.get_verified(org_id, IntegrationKey.SMTP)["password"] = "mutated"

    assert cache.get_verified(org_id, IntegrationKey.SMTP) == {"password": "pw"}


def test_invalidate_fences_off_in_flight_test(cache, org_id):
    """A test begun before an invalidation cannot publish its result."""
    generation = cache.begin(org_id, IntegrationKey.SMTP)
    cache.invalidate(org_id, IntegrationKey.SMTP)

    assert not cache.mark_verified(org_id, IntegrationKey.SMTP, generation, {"password": "old"})
    assert not cache.is_verified(org_id, IntegrationKey.SMTP)


def test_invalidate_drops_existing_entry(cache, org_id):
    generation = cache.begin(org_id, IntegrationKey.STRIPE)
    cache.mark_verified(org_id, IntegrationKey.STRIPE, generation, {})

    cache.invalidate(org_id, IntegrationKey.STRIPE)

    assert cache.get(org_id, IntegrationKey.STRIPE) is None


def test_discard_only_affects_its_generation(cache, org_id):
    """Discarding a stale generation leaves a newer verified entry alone."""
    old = cache.begin(org_id, IntegrationKey.SMTP)
    cache.invalidate(org_id, IntegrationKey.SMTP)
    current = cache.begin(org_id, IntegrationKey.SMTP)
    cache.mark_verified(org_id, IntegrationKey.SMTP, current, {"password": "new"})

    cache.discard(org_id, IntegrationKey.SMTP, old)
    assert cache.is_verified(org_id, IntegrationKey.SMTP)

    cache.discard(org_id, IntegrationKey.SMTP, current)
    assert not cache.is_verified(org_id, IntegrationKey.SMTP)


def test_keys_are_scoped_by_org_and_integration(cache, org_id):
    other_org = uuid.uuid4()
    generation = cache.begin(org_id, IntegrationKey.SMTP)
    cache.mark_verified(org_id, IntegrationKey.SMTP, generation, {})

    cache.invalidate(other_org, IntegrationKey.SMTP)
    cache.invalidate(org_id, IntegrationKey.STRIPE)

    assert cache.is_verified(org_id, IntegrationKey.SMTP)
    assert not cache.is_verified(other_org, IntegrationKey.SMTP)


def test_accepts_string_keys(cache, org_id):
    generation = cache.begin(org_id, "smtp")
    cache.mark_verified(org_id, IntegrationKey.SMTP, generation, {})
    assert cache.is_verified(org_id, "smtp")


def test_concurrent_invalidations_all_counted(cache, org_id):
    """Every invalidation from parallel threads bumps the generation."""
    start = cache.begin(org_id, IntegrationKey.SMTP)

    threads = [
        threading.Thread(target=cache.invalidate, args=(org_id, IntegrationKey.SMTP))
        for _ in range(20)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert cache.begin(org_id, IntegrationKey.SMTP) == start + 20
