"""Access evaluation for report operations.

Two independent checks guard every operation:
1. Capability: the actor's session carries the permission string.
2. Subject scope: internal staff act on any subject; external users need
   an APPROVED access grant for the report's subject.

Read-only; no locking required.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol
from uuid import UUID

from src.models.common import Permission
from src.reporting.errors import AccessDeniedError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by the lifecycle."""

    user_id: UUID
    is_internal: bool = False
    permissions: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, permission: Permission | str) -> bool:
        return str(permission) in self.permissions


class GrantLookup(Protocol):
    """Read-only view over user-to-subject access grants."""

    async def has_approved_grant(self, user_id: UUID, subject_id: int) -> bool: ...

    async def approved_subject_ids(self, user_id: UUID) -> list[int]: ...


class StaticGrantLookup:
    """In-memory grant lookup. Production uses AccessGrantRepository."""

    def __init__(self, approved: Iterable[tuple[UUID, int]] = ()) -> None:
        self._approved: set[tuple[UUID, int]] = set(approved)

    def approve(self, user_id: UUID, subject_id: int) -> None:
        self._approved.add((user_id, subject_id))

    def revoke(self, user_id: UUID, subject_id: int) -> None:
        self._approved.discard((user_id, subject_id))

    async def has_approved_grant(self, user_id: UUID, subject_id: int) -> bool:
        return (user_id, subject_id) in self._approved

    async def approved_subject_ids(self, user_id: UUID) -> list[int]:
        return sorted(sid for uid, sid in self._approved if uid == user_id)


class AccessEvaluator:
    """Decide whether an actor may act on a subject's reports."""

    def __init__(self, grants: GrantLookup) -> None:
        self._grants = grants

    async def can_act_on_subject(self, actor: Actor, subject_id: int) -> bool:
        if actor.is_internal:
            return True
        return await self._grants.has_approved_grant(actor.user_id, subject_id)

    async def require_subject_access(self, actor: Actor, subject_id: int) -> None:
        if not await self.can_act_on_subject(actor, subject_id):
            msg = f"Access denied to subject {subject_id}."
            raise AccessDeniedError(msg)

    def require_permission(self, actor: Actor, permission: Permission) -> None:
        if not actor.has_permission(permission):
            msg = f"Missing permission {permission}."
            raise AccessDeniedError(msg)

    def require_internal(self, actor: Actor, action: str) -> None:
        if not actor.is_internal:
            msg = f"Only internal staff can {action}."
            raise AccessDeniedError(msg)

    async def visible_subject_ids(self, actor: Actor) -> list[int] | None:
        """Subjects the actor may list. None means unrestricted."""
        if actor.is_internal:
            return None
        return await self._grants.approved_subject_ids(actor.user_id)
