"""
Uniform JSON envelope.

Success: {"success": true, "data": {...}}
Failure: {"success": false, "error": "<message>"}
"""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from signdesk.core.results import ErrorKind, Failure, Result


def success_response(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": data})


def error_response(message: str, status_code: int, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


def failure_response(failure: Failure) -> JSONResponse:
    headers = None
    if failure.kind == ErrorKind.UNAUTHENTICATED:
        headers = {"WWW-Authenticate": "Bearer"}
    return error_response(failure.message, failure.status_code, headers)


def result_response(result: Result, status_code: int = 200) -> JSONResponse:
    if result.ok:
        return success_response(result.data, status_code)
    return failure_response(result)
