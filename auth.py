"""Access checks and owner lookup.

Both are collaborators owned by other systems (sessions, user profiles). The
service only needs the narrow answers defined here.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminCheck:
    is_admin: bool
    error: Optional[str] = None


class AdminValidator(Protocol):
    def validate(self, request: Request) -> AdminCheck: ...

    def validate_trigger(self, request: Request) -> AdminCheck: ...


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


class BearerTokenValidator:
    """Accepts ``Authorization: Bearer <token>``.

    The operator token unlocks every admin endpoint; the cron secret only
    unlocks the timer-triggered ones. An empty configured token matches
    nothing.
    """

    def __init__(self, admin_token: str = "", cron_secret: str = "") -> None:
        self.admin_token = admin_token
        self.cron_secret = cron_secret

    @staticmethod
    def _matches(token: Optional[str], expected: str) -> bool:
        return bool(token and expected) and secrets.compare_digest(token, expected)

    def validate(self, request: Request) -> AdminCheck:
        token = _bearer(request)
        if token is None:
            return AdminCheck(is_admin=False, error="Not authenticated")
        if not self._matches(token, self.admin_token):
            logger.warning(f"Rejected admin token for {request.url.path}")
            return AdminCheck(is_admin=False, error="Not admin")
        return AdminCheck(is_admin=True)

    def validate_trigger(self, request: Request) -> AdminCheck:
        if self._matches(_bearer(request), self.cron_secret):
            return AdminCheck(is_admin=True)
        return self.validate(request)


class OwnerDirectory(Protocol):
    def exists(self, owner_id: str) -> bool: ...


class StaticOwnerDirectory:
    """Owner ids known up front, e.g. loaded from a profile export."""

    def __init__(self, owner_ids: Iterable[str]) -> None:
        self._owner_ids = set(owner_ids)

    def add(self, owner_id: str) -> None:
        self._owner_ids.add(owner_id)

    def exists(self, owner_id: str) -> bool:
        return owner_id in self._owner_ids
