from __future__ import annotations
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from shopfloor.core.errors import ErrorKind
from weighing.commands import CommandResult

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TRANSIENT_INGESTION: 422,
    ErrorKind.TRANSPORT: 503,
}

def to_response(result: CommandResult, *, created: bool = False) -> JSONResponse:
    if result.success:
        status = 201 if created else 200
    else:
        status = STATUS_BY_KIND.get(result.error_kind, 400)
    return JSONResponse(status_code=status, content=jsonable_encoder(result.to_dict()))

def parse_bool(value, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "n", "off", "")
    return bool(value)
