"""Terminal error stage."""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from gateway.middleware.pipeline import RequestContext
from gateway.middleware.request_logger import original_url

logger = structlog.get_logger()


def status_for(error: BaseException) -> int:
    """The error's own ``status_code`` when it declares a usable one, else 500."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int) and 400 <= status <= 599:
        return status
    return 500


class ErrorHandler:
    """Convert a failure from any earlier stage into an empty-bodied response.

    Not a pipeline stage: the chain consults it only on failure and it never
    hands the request onward.
    """

    def __init__(self, logging_enabled: bool = True) -> None:
        self._logging_enabled = logging_enabled

    async def handle(self, request: Request, context: RequestContext, error: BaseException) -> Response:
        status_code = status_for(error)
        if self._logging_enabled:
            logger.error(
                "http_error",
                method=request.method,
                source_address=context.source_address,
                url=original_url(request),
                status_code=status_code,
                error=repr(error),
                request_id=context.request_id,
            )
        return Response(status_code=status_code)
