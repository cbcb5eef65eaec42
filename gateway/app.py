"""ASGI application that runs every request through the gateway's middleware chain."""

from __future__ import annotations

from typing import Any

import structlog
from starlette.requests import Request
from starlette.types import Receive, Scope, Send
from starlette.websockets import WebSocket

from gateway.config.loader import GatewaySettings
from gateway.hub import Hub
from gateway.middleware.body_parser import BodyParser
from gateway.middleware.cors import CorsPolicyStage
from gateway.middleware.error_handler import ErrorHandler
from gateway.middleware.pipeline import MiddlewareChain, RequestContext, as_middleware
from gateway.middleware.request_counter import RequestCounter
from gateway.middleware.request_logger import RequestLogger, resolve_source_address
from gateway.middleware.router import Router
from gateway.stats import GatewayStats
from gateway.websocket_handler import StreamRegistry

logger = structlog.get_logger()


def build_chain(settings: GatewaySettings, stats: GatewayStats) -> MiddlewareChain:
    """Build the fixed front of the chain.

    Order: request counter, CORS, body parsing, request logging, then the
    configured user middleware. Routers and dynamically registered
    middleware are appended after these, and the error stage is installed
    last, right before the server binds.
    """
    chain = MiddlewareChain()
    chain.add(RequestCounter(stats))
    chain.add(CorsPolicyStage(settings.cors))
    if settings.enable_body_parser:
        chain.add(BodyParser(settings.body_parser_limit))
    chain.add(RequestLogger(enabled=settings.logging))
    for mw in settings.middleware:
        chain.add(as_middleware(mw))
    return chain


class GatewayApp:
    """The object handed to collaborators on ``pre-start``.

    Collaborators call ``use`` to append middleware and ``router`` to get a
    mounted path+verb router.
    """

    def __init__(self, settings: GatewaySettings, hub: Hub, stats: GatewayStats) -> None:
        self.settings = settings
        self.stats = stats
        self.chain = build_chain(settings, stats)
        self.streams: StreamRegistry | None = None
        if settings.enable_websocket:
            self.streams = StreamRegistry(hub, stats, settings.websocket_path, settings.trust_proxy)

    def use(self, *middleware: Any) -> None:
        for mw in middleware:
            self.chain.add(as_middleware(mw))

    def router(self, prefix: str = "", name: str | None = None) -> Router:
        """Create a router, mount it at the current end of the chain and return it."""
        r = Router(prefix, name=name)
        self.chain.add(r)
        return r

    def install_error_stage(self) -> None:
        if not self.chain.sealed:
            self.chain.seal(ErrorHandler(logging_enabled=self.settings.logging))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            await self._handle_http(scope, receive, send)
        elif scope["type"] == "websocket":
            ws = WebSocket(scope, receive, send)
            if self.streams is None:
                await ws.close(code=1008)
                return
            await self.streams.handle(ws)
        elif scope["type"] == "lifespan":
            await self._lifespan(receive, send)

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        context = RequestContext(
            source_address=resolve_source_address(request, self.settings.trust_proxy),
        )
        status_code = 500
        error: BaseException | None = None
        try:
            response = await self.chain.handle(request, context)
            status_code = response.status_code
            await response(scope, receive, send)
        except BaseException as exc:
            error = exc
            raise
        finally:
            context.complete(status_code, error)

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
