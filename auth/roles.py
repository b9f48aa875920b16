"""
auth/roles.py -- Authorization collaborator: role names -> authority strings.

Role and permission storage belongs to a separate system. The authentication
core only needs two answers from it, so it talks to a RoleDirectory:

  default_roles()          roles granted to a freshly registered identity
  authorities_for(roles)   the flat authority set those roles grant

StaticRoleDirectory answers both from configuration (DEFAULT_ROLES and
ROLE_PERMISSIONS). Authorities use the "resource:ACTION" form, and every role
also grants "ROLE_<name>" so route guards can check role membership.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol


class RoleDirectory(Protocol):
    def default_roles(self) -> tuple[str, ...]: ...

    def authorities_for(self, roles: Iterable[str]) -> frozenset[str]: ...


class StaticRoleDirectory:
    """Config-backed RoleDirectory. Unknown role names grant only ROLE_<name>."""

    def __init__(self, role_permissions: Mapping[str, Iterable[str]], default_roles: Iterable[str]) -> None:
        self._permissions = {role: frozenset(perms) for role, perms in role_permissions.items()}
        self._default_roles = tuple(default_roles)

    def default_roles(self) -> tuple[str, ...]:
        return self._default_roles

    def authorities_for(self, roles: Iterable[str]) -> frozenset[str]:
        granted: set[str] = set()
        for role in roles:
            granted.add(f"ROLE_{role}")
            granted.update(self._permissions.get(role, ()))
        return frozenset(granted)
