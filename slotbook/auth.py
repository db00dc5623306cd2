"""
Caller identity as handed over by the authentication layer.

Token handling lives upstream; by the time a request reaches this service
the gateway has resolved it to a user id and role, forwarded as the
X-User-Id / X-User-Role headers.
"""

from collections.abc import Callable

from fastapi import Depends, Header

from slotbook.errors import AuthenticationRequired, PermissionDenied
from slotbook.models import CallerIdentity, Role


async def get_caller(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> CallerIdentity | None:
    if not x_user_id:
        return None
    try:
        role = Role((x_user_role or Role.USER).strip().lower())
    except ValueError:
        raise AuthenticationRequired(f"Unknown role: {x_user_role}") from None
    return CallerIdentity(user_id=x_user_id.strip(), role=role)


async def require_caller(
    caller: CallerIdentity | None = Depends(get_caller),
) -> CallerIdentity:
    if caller is None:
        raise AuthenticationRequired()
    return caller


def restrict_to(*roles: Role) -> Callable:
    async def dependency(
        caller: CallerIdentity = Depends(require_caller),
    ) -> CallerIdentity:
        if caller.role not in roles:
            raise PermissionDenied()
        return caller

    return dependency
