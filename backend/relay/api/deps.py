from __future__ import annotations

from fastapi import HTTPException, Request

from relay.runtime import RelayRuntime
from relay.runtime_errors import NotFoundError, PreconditionError, RelayError

MEMBERSHIP_CODES = {"PLAYER_NOT_IN_ROOM", "NOT_IN_BATTLE"}


def get_runtime(request: Request) -> RelayRuntime:
    return request.app.state.runtime


def http_error(exc: RelayError) -> HTTPException:
    if exc.code in MEMBERSHIP_CODES:
        status_code = 403
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, PreconditionError):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})
