"""Unit tests for auth/lockout.py -- pure Active/Locked transitions.

No database: every transition is a function of an Identity snapshot.
"""

from datetime import datetime, timezone

import pytest

from auth.errors import AccountLockedError, EmailNotVerifiedError
from auth.lockout import LockoutPolicy
from auth.models import Identity

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _identity(**overrides) -> Identity:
    fields = {"id": 1, "username": "alice", "email": "alice@example.com", "hashed_password": "x"}
    fields.update(overrides)
    return Identity(**fields)


@pytest.fixture
def policy() -> LockoutPolicy:
    return LockoutPolicy(threshold=5)


def test_failures_below_threshold_stay_active(policy):
    identity = _identity()
    for expected in range(1, 5):
        identity = policy.record_failure(identity, NOW)
        assert identity.failed_login_attempts == expected
        assert identity.account_locked is False
        assert identity.locked_at is None


def test_reaching_threshold_locks(policy):
    identity = _identity(failed_login_attempts=4)
    locked = policy.record_failure(identity, NOW)
    assert locked.failed_login_attempts == 5
    assert locked.account_locked is True
    assert locked.locked_at == NOW


def test_transitions_do_not_mutate_input(policy):
    identity = _identity(failed_login_attempts=4)
    policy.record_failure(identity, NOW)
    assert identity.failed_login_attempts == 4
    assert identity.account_locked is False


def test_failure_on_locked_identity_is_a_no_op(policy):
    locked = _identity(failed_login_attempts=5, account_locked=True, locked_at=NOW)
    assert policy.record_failure(locked, NOW) is locked


def test_success_resets_counter_and_stamps_login(policy):
    identity = policy.record_success(_identity(failed_login_attempts=3), NOW)
    assert identity.failed_login_attempts == 0
    assert identity.last_login_at == NOW


def test_unlock_clears_lock_fields(policy):
    unlocked = policy.unlock(_identity(failed_login_attempts=5, account_locked=True, locked_at=NOW))
    assert unlocked.account_locked is False
    assert unlocked.locked_at is None
    assert unlocked.failed_login_attempts == 0


def test_check_rejects_locked(policy):
    policy.check(_identity())
    with pytest.raises(AccountLockedError):
        policy.check(_identity(account_locked=True))


def test_verification_only_enforced_when_configured():
    unverified = _identity(email_verified=False)
    LockoutPolicy(require_email_verification=False).check_verified(unverified)
    with pytest.raises(EmailNotVerifiedError):
        LockoutPolicy(require_email_verification=True).check_verified(unverified)
    LockoutPolicy(require_email_verification=True).check_verified(_identity(email_verified=True))


def test_custom_threshold():
    policy = LockoutPolicy(threshold=2)
    identity = policy.record_failure(_identity(), NOW)
    assert identity.account_locked is False
    assert policy.record_failure(identity, NOW).account_locked is True


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        LockoutPolicy(threshold=0)
