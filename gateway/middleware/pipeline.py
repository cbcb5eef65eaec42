"""Ordered middleware chain framework.

Every stage answers ``process_request`` with an explicit outcome:
``Continue`` hands the request to the next stage, ``Respond`` ends the
forward pass with a response, ``Fail`` hands an error to the error stage.
``process_response`` then runs in reverse over the stages that saw the
request, so a stage that annotates responses (CORS) also annotates error
and short-circuit responses produced after it.
"""

from __future__ import annotations

import abc
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Union
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

logger = structlog.get_logger()


@dataclass(frozen=True)
class Continue:
    """Pass the request on to the next stage."""


@dataclass(frozen=True)
class Respond:
    response: Response


@dataclass(frozen=True)
class Fail:
    error: BaseException


Outcome = Union[Continue, Respond, Fail]

CONTINUE = Continue()

CompletionHook = Callable[[int, "BaseException | None"], None]


@dataclass
class RequestContext:
    """Per-request state. Created at request entry, dropped after completion."""

    request_id: str = ""
    started_at: float = field(default_factory=time.perf_counter)
    source_address: str = ""
    body: Any = None
    body_parsed: bool = False
    path_params: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    _completion_hooks: list[CompletionHook] = field(default_factory=list, repr=False)
    _completed: bool = field(default=False, repr=False)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = uuid4().hex[:8]

    def on_complete(self, hook: CompletionHook) -> None:
        """Register a hook fired once the response has been sent or the peer went away."""
        self._completion_hooks.append(hook)

    def complete(self, status_code: int, error: BaseException | None = None) -> None:
        if self._completed:
            return
        self._completed = True
        for hook in self._completion_hooks:
            try:
                hook(status_code, error)
            except Exception:
                logger.exception("completion_hook_error", request_id=self.request_id)


class Middleware(abc.ABC):
    """Base class for stages in the pipeline."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        """Process an incoming request and say how the chain should proceed."""
        ...

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Process an outgoing response. Override if needed."""
        return response


def to_outcome(result: Any) -> Outcome:
    """Coerce a stage's return value into an outcome.

    ``None`` continues and a bare ``Response`` responds, so plain functions
    can be registered as middleware.
    """
    if result is None:
        return CONTINUE
    if isinstance(result, (Continue, Respond, Fail)):
        return result
    if isinstance(result, Response):
        return Respond(result)
    return Fail(TypeError(f"middleware returned unsupported value {type(result).__name__}"))


class FunctionMiddleware(Middleware):
    """Adapt ``fn(request, context)`` (sync or async) into a stage."""

    def __init__(self, fn: Callable[..., Any]) -> None:
        self._fn = fn

    @property
    def name(self) -> str:
        return getattr(self._fn, "__name__", self._fn.__class__.__name__)

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        result = self._fn(request, context)
        if inspect.isawaitable(result):
            result = await result
        return to_outcome(result)


def as_middleware(obj: Any) -> Middleware:
    if isinstance(obj, Middleware):
        return obj
    if callable(obj):
        return FunctionMiddleware(obj)
    raise TypeError(f"not a middleware: {obj!r}")


class MiddlewareChain:
    """Ordered list of stages plus a terminal error stage.

    Stages run in the order they were added. The error stage is never part
    of the forward pass; it is only consulted when a stage fails.
    """

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._enabled: dict[str, bool] = {}
        self._error_stage: Any = None

    @property
    def stages(self) -> list[Middleware]:
        return list(self._middleware)

    @property
    def sealed(self) -> bool:
        return self._error_stage is not None

    def add(self, middleware: Middleware, enabled: bool = True) -> None:
        """Add a middleware to the end of the pipeline."""
        self._middleware.append(middleware)
        self._enabled[middleware.name] = enabled
        logger.debug("middleware_registered", name=middleware.name, enabled=enabled, sealed=self.sealed)

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a middleware by name."""
        if name in self._enabled:
            self._enabled[name] = enabled

    def get_middleware(self, cls: type) -> Middleware | None:
        for mw in self._middleware:
            if isinstance(mw, cls):
                return mw
        return None

    def seal(self, error_stage: Any) -> None:
        """Install the error stage. It always handles failures of every other stage."""
        self._error_stage = error_stage
        logger.debug("error_stage_installed", name=type(error_stage).__name__)

    async def handle(self, request: Request, context: RequestContext) -> Response:
        """Run one request through the chain and return the response to send."""
        ran: list[Middleware] = []
        response: Response | None = None

        for mw in self._middleware:
            if not self._enabled.get(mw.name, True):
                continue
            ran.append(mw)
            try:
                outcome = to_outcome(await mw.process_request(request, context))
            except Exception as exc:
                outcome = Fail(exc)
            if isinstance(outcome, Respond):
                response = outcome.response
                break
            if isinstance(outcome, Fail):
                response = await self._fail(request, context, outcome.error, mw.name)
                break

        if response is None:
            response = PlainTextResponse(f"Cannot {request.method} {request.url.path}", status_code=404)

        for mw in reversed(ran):
            try:
                response = await mw.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=mw.name)
        return response

    async def _fail(
        self, request: Request, context: RequestContext, error: BaseException, stage: str
    ) -> Response:
        if self._error_stage is None:
            logger.error("middleware_request_error", middleware=stage, error=str(error))
            return Response(status_code=500)
        try:
            return await self._error_stage.handle(request, context, error)
        except Exception:
            logger.exception("error_stage_failed", middleware=stage)
            return Response(status_code=500)
