"""JSON error bodies and CORS headers shared by all routers."""

from __future__ import annotations

from fastapi.responses import JSONResponse

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}


def error_response(status_code: int, message: str, *, cors: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message},
        headers=CORS_HEADERS if cors else None,
    )


def parse_int(value: str | None) -> int | None:
    """Optional integer query parameter; raises ValueError on garbage."""
    if value is None or value == "":
        return None
    return int(value)
