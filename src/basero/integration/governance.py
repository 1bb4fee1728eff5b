"""
Governance collaborator: who may call the privileged engine methods.

The engines perform no authorization themselves. Operators route privileged
calls through `Governance.execute`, which checks the actor's role first.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Set, TypeVar

from ..core.errors import Unauthorized

logger = logging.getLogger(__name__)

R = TypeVar("R")


class Role(Enum):
    OWNER = "owner"
    RATE_ADMIN = "rate_admin"
    PAUSER = "pauser"
    ROUTE_ADMIN = "route_admin"
    ACCRUER = "accruer"


class RoleTable:
    """Capability table: actor -> granted roles."""

    def __init__(self) -> None:
        self._roles: Dict[str, Set[Role]] = {}

    def grant(self, actor: str, role: Role) -> None:
        self._roles.setdefault(actor, set()).add(role)

    def revoke(self, actor: str, role: Role) -> None:
        roles = self._roles.get(actor)
        if roles is not None:
            roles.discard(role)
            if not roles:
                del self._roles[actor]

    def has(self, actor: str, role: Role) -> bool:
        roles = self._roles.get(actor, set())
        return role in roles or Role.OWNER in roles

    def roles_of(self, actor: str) -> FrozenSet[Role]:
        return frozenset(self._roles.get(actor, ()))


class Governance:
    def __init__(self, roles: RoleTable) -> None:
        self.roles = roles

    def require(self, actor: str, role: Role) -> None:
        if not self.roles.has(actor, role):
            raise Unauthorized(f"{actor!r} lacks role {role.value}", actor=actor, role=role.value)

    def execute(self, actor: str, role: Role, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Call ``fn`` on behalf of ``actor`` once ``role`` is confirmed."""
        self.require(actor, role)
        logger.info("%s executing %s as %s", actor, getattr(fn, "__name__", fn), role.value)
        return fn(*args, **kwargs)
