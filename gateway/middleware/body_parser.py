"""Body parsing stage: JSON, urlencoded forms and text under a size limit."""

from __future__ import annotations

from typing import Any

import structlog
from starlette.requests import Request

from gateway.errors import MalformedBody, PayloadTooLarge
from gateway.middleware.pipeline import CONTINUE, Fail, Middleware, Outcome, RequestContext

logger = structlog.get_logger()

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "DELETE"})


def _media_type(request: Request) -> tuple[str, str]:
    """Split Content-Type into (media type, charset)."""
    raw = request.headers.get("content-type", "")
    parts = [p.strip() for p in raw.split(";")]
    media_type = parts[0].lower()
    charset = "utf-8"
    for param in parts[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value:
            charset = value.strip().strip('"')
    return media_type, charset


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


class BodyParser(Middleware):
    """Parse the request body into ``context.body``.

    Bodies over ``limit`` bytes fail with 413, undecodable JSON or text with
    400. Content types without a parser leave ``context.body`` as ``None``
    and the raw bytes available through ``request.body()``.
    """

    def __init__(self, limit: int) -> None:
        self._limit = int(limit)

    @property
    def limit(self) -> int:
        return self._limit

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        media_type, charset = _media_type(request)
        if not media_type and request.method in _BODYLESS_METHODS:
            return CONTINUE

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                declared = int(content_length)
            except (ValueError, OverflowError):
                return Fail(MalformedBody("invalid Content-Length"))
            if declared > self._limit:
                return Fail(PayloadTooLarge(self._limit, declared))

        body = await request.body()
        if len(body) > self._limit:
            return Fail(PayloadTooLarge(self._limit, len(body)))

        try:
            parsed = await self._parse(request, body, media_type, charset)
        except MalformedBody as exc:
            return Fail(exc)
        if parsed is not None:
            context.body = parsed
            context.body_parsed = True
        return CONTINUE

    async def _parse(self, request: Request, body: bytes, media_type: str, charset: str) -> Any:
        if _is_json(media_type):
            if not body.strip():
                return {}
            try:
                return await request.json()
            except ValueError as exc:
                logger.debug("json_body_invalid", error=str(exc))
                raise MalformedBody("request body is not valid JSON") from exc
        if media_type == "application/x-www-form-urlencoded":
            form = await request.form()
            grouped: dict[str, list[Any]] = {}
            for key, value in form.multi_items():
                grouped.setdefault(key, []).append(value)
            return {key: values[0] if len(values) == 1 else values for key, values in grouped.items()}
        if media_type.startswith("text/"):
            try:
                return body.decode(charset)
            except (LookupError, UnicodeDecodeError) as exc:
                raise MalformedBody(f"request body is not valid {charset}") from exc
        return None
