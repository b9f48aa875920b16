"""
tests/test_cli.py -- Tests for the administrative command line in main.py.

main() accepts an injected SessionService so these tests run against the
isolated per-test database instead of DATABASE_URL.
"""

from __future__ import annotations

import pytest

from auth.errors import InvalidCredentialsError
from main import main


@pytest.fixture
def locked_id(service) -> int:
    identity_id = service.register("carol", "carol@example.com", "carol-secret").identity.id
    for _ in range(5):
        with pytest.raises(InvalidCredentialsError):
            service.login("carol", "wrong-secret")
    return identity_id


def test_show_prints_identity(service, locked_id, capsys):
    assert main(["show", str(locked_id)], service=service) == 0
    out = capsys.readouterr().out
    assert "carol@example.com" in out
    assert "locked:           yes" in out
    assert "failed attempts:  5" in out


def test_unlock(service, locked_id, capsys):
    assert main(["unlock", str(locked_id)], service=service) == 0
    assert "Unlocked carol" in capsys.readouterr().out
    assert service.get_identity(locked_id).account_locked is False


def test_verify_email(service, locked_id):
    assert main(["verify-email", str(locked_id)], service=service) == 0
    assert service.get_identity(locked_id).email_verified is True


def test_delete(service, locked_id):
    assert main(["delete", str(locked_id)], service=service) == 0
    assert service.identities.count_active() == 0


@pytest.mark.parametrize("command", ["show", "unlock", "verify-email", "delete"])
def test_unknown_identity_returns_1(service, command, capsys):
    assert main([command, "424242"], service=service) == 1
    assert "[!] No identity with id 424242" in capsys.readouterr().out


def test_stats(service, locked_id, admin_id, capsys):
    assert main(["stats"], service=service) == 0
    out = capsys.readouterr().out
    assert "identities: 2" in out
    assert "locked:     1" in out


def test_sweep(service, capsys):
    assert main(["sweep"], service=service) == 0
    assert "Removed 0 expired refresh session(s)." in capsys.readouterr().out


def test_missing_command_exits():
    with pytest.raises(SystemExit):
        main([])
