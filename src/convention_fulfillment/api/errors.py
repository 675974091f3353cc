"""JSON error envelopes."""

from fastapi.responses import JSONResponse

from convention_fulfillment.api.schemas import ErrorResponse


def error_response(
    status_code: int,
    message: str,
    *,
    error: str | None = None,
    errors: list[str] | None = None,
    retry_after: int | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """`{success: false, message, ...}` with only the fields that are set."""
    body = ErrorResponse(
        message=message, error=error, errors=errors or None, retry_after=retry_after
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )
