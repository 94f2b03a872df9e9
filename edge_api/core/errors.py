from __future__ import annotations

from typing import Any, Dict

from fastapi.responses import JSONResponse

from edge_voice.services.errors import DETAIL_LIMIT


def error_response(message: str, detail: Any | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"error": message}
    if detail is not None:
        payload["detail"] = detail[:DETAIL_LIMIT] if isinstance(detail, str) else detail
    return payload


def error_json(status_code: int, message: str, detail: Any | None = None) -> JSONResponse:
    return JSONResponse(error_response(message, detail), status_code=status_code)
