"""FastAPI dependencies for routes behind the authorization gate."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from .gate import TokenPrincipal


def get_current_principal(request: Request) -> TokenPrincipal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


def require_roles(*roles: str) -> Callable[[TokenPrincipal], TokenPrincipal]:
    allowed = frozenset(roles)

    def _dependency(principal: TokenPrincipal = Depends(get_current_principal)) -> TokenPrincipal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges")
        return principal

    return _dependency
