import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """An error with a known HTTP status, rendered as `{error, details}`."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_content(self) -> dict:
        content = {"error": self.error}
        if self.details is not None:
            content["details"] = self.details
        return content


class SearchUnavailableError(Exception):
    """The search engine could not be reached or answered with a server error."""


def internal_error(exc: Exception) -> ApiError:
    return ApiError(500, "Internal server error", str(exc))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


async def search_unavailable_handler(request: Request, exc: SearchUnavailableError) -> JSONResponse:
    logger.error(f"Search engine unavailable in {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"error": "Service unavailable", "details": str(exc)})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=internal_error(exc).to_content())


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(SearchUnavailableError, search_unavailable_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


