"""Request logging stage: one structured record per completed request."""

from __future__ import annotations

import time

import structlog
from starlette.requests import HTTPConnection, Request

from gateway.middleware.pipeline import CONTINUE, Middleware, Outcome, RequestContext

logger = structlog.get_logger()


def resolve_source_address(conn: HTTPConnection, trust_proxy: bool = False) -> str:
    """First non-empty of: forwarded IP, proxy-reported real IP, connection peer."""
    candidates: list[str] = []
    if trust_proxy:
        forwarded = conn.headers.get("x-forwarded-for", "")
        candidates.append(forwarded.split(",")[0].strip())
        candidates.append(conn.headers.get("x-real-ip", "").strip())
    client = conn.scope.get("client")
    if client:
        candidates.append(str(client[0]))
    for candidate in candidates:
        if candidate:
            return candidate
    return ""


def original_url(conn: HTTPConnection) -> str:
    """Path plus query string, as the client sent it."""
    url = conn.url.path
    if conn.url.query:
        url = f"{url}?{conn.url.query}"
    return url


class RequestLogger(Middleware):
    """Log method, source, url, status and elapsed milliseconds on completion.

    The log call is deferred to a completion hook so it fires once the
    response is fully sent, or the peer dropped the connection, without
    holding up the request.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        if not self._enabled:
            return CONTINUE

        started = time.perf_counter()
        method = request.method
        url = original_url(request)
        source_address = context.source_address

        def _log(status_code: int, error: BaseException | None) -> None:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            fields = {
                "method": method,
                "source_address": source_address,
                "url": url,
                "status_code": status_code,
                "elapsed_ms": elapsed_ms,
                "request_id": context.request_id,
            }
            if error is not None:
                fields["aborted"] = True
            logger.info("http_request", **fields)

        context.on_complete(_log)
        return CONTINUE
