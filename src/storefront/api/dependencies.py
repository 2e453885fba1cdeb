"""Request-scoped dependencies shared by every router.

Identity comes from the external auth layer as ``X-User-Id`` and
``X-User-Role`` headers. Manager calls are synchronous and may block on a
real-time acknowledgement, so ``call`` runs them in a worker thread with the
domain context pushed there.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, HTTPException, Request
from fastapi.requests import HTTPConnection

from storefront.services import Services
from storefront.utils.logging import bind_request_context

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


async def current_identity(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Identity:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    identity = Identity(user_id=x_user_id, role=(x_user_role or "customer").lower())
    bind_request_context(user_id=identity.user_id)
    return identity


async def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return identity


def get_services(request: Request) -> Services:
    return request.app.state.services


async def call(connection: HTTPConnection, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run ``fn`` off the event loop inside the app's domain context."""
    domain = connection.app.state.domain

    def run():
        with domain.domain_context():
            return fn(*args, **kwargs)

    return await asyncio.to_thread(run)
