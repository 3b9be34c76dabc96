"""Tests for the admin credential gate."""

import pytest

from admin_gate import AdminAlreadyConfigured, AdminCredentialGate


@pytest.fixture
def gate(facade):
    return AdminCredentialGate(facade, master_key="")


async def test_no_admin_configured_initially(gate):
    assert await gate.credentials_exist() is False
    assert await gate.validate("admin", "admin") is False


async def test_setup_creates_admin_and_session(gate):
    token = await gate.setup("owner", "s3cret")

    assert gate.is_admin_session(token)
    assert await gate.credentials_exist() is True
    assert await gate.validate("owner", "s3cret") is True


async def test_setup_refused_once_configured(gate):
    await gate.setup("owner", "s3cret")
    with pytest.raises(AdminAlreadyConfigured):
        await gate.setup("intruder", "pw")
    assert await gate.validate("owner", "s3cret")


async def test_validate_requires_both_fields_to_match(gate):
    await gate.set_credentials("owner", "s3cret")

    assert await gate.validate("owner", "wrong") is False
    assert await gate.validate("Owner", "s3cret") is False


async def test_login_issues_distinct_sessions(gate):
    await gate.set_credentials("owner", "s3cret")

    first = await gate.login("owner", "s3cret")
    second = await gate.login("owner", "s3cret")

    assert first and second and first != second
    assert await gate.login("owner", "nope") is None


async def test_set_credentials_overwrites(gate):
    await gate.set_credentials("owner", "old")
    await gate.set_credentials("manager", "new")

    assert await gate.validate("owner", "old") is False
    assert await gate.validate("manager", "new") is True


async def test_logout_ends_session(gate):
    token = await gate.setup("owner", "s3cret")
    gate.logout(token)
    assert not gate.is_admin_session(token)
    assert not gate.is_admin_session(None)


async def test_credentials_work_offline(gate, facade, fake_store):
    fake_store.fail = True

    assert await gate.credentials_exist() is False
    await gate.setup("owner", "s3cret")

    assert facade.is_offline
    assert await gate.validate("owner", "s3cret")
    assert fake_store.collections["settings"] == {}


def test_master_key_disabled_when_unset(gate):
    assert gate.login_with_master_key("ADMIN-MASTER-2025") is None


def test_master_key_grants_session(facade):
    gate = AdminCredentialGate(facade, master_key="OVERRIDE-1234")

    token = gate.login_with_master_key("OVERRIDE-1234")

    assert gate.is_admin_session(token)
    assert gate.login_with_master_key("OVERRIDE-9999") is None
