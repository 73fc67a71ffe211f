from __future__ import annotations

import logging

from fastapi import HTTPException

from kiosk.api.auth import Role, check_password, issue_token
from kiosk.api.handlers.deps import ApiDeps
from kiosk.api.schemas import LoginResponse

logger = logging.getLogger("kiosk.auth")


async def login_handler(*, role: Role, password: str, api_deps: ApiDeps) -> LoginResponse:
    if not check_password(api_deps.auth, role, password):
        logger.warning("login rejected", extra={"role": role.value})
        raise HTTPException(status_code=401, detail="Invalid password")
    return LoginResponse(token=issue_token(api_deps.auth, role), role=role.value)
