"""Path + verb routing stage.

A ``Router`` sits in the chain like any other stage: when a route matches
it responds, otherwise the request continues to the next stage. Several
routers can be mounted; the CRUD bridge and every collaborator asking for
a router through the hub get their own.
"""

from __future__ import annotations

import inspect
import itertools
import re
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from starlette.convertors import Convertor
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import compile_path

from gateway.middleware.pipeline import CONTINUE, Middleware, Outcome, RequestContext, Respond

logger = structlog.get_logger()

Endpoint = Callable[[Request, RequestContext], Any]

_router_ids = itertools.count(1)


@dataclass(frozen=True)
class RouteBinding:
    method: str
    path: str
    regex: re.Pattern[str]
    convertors: dict[str, Convertor]
    endpoint: Endpoint

    def match(self, method: str, path: str) -> dict[str, Any] | None:
        if method != self.method and not (method == "HEAD" and self.method == "GET"):
            return None
        m = self.regex.match(path)
        if m is None:
            return None
        return {key: self.convertors[key].convert(value) for key, value in m.groupdict().items()}


def to_response(result: Any) -> Response:
    """Turn an endpoint's return value into a response."""
    if isinstance(result, Response):
        return result
    if result is None:
        return Response(status_code=204)
    if isinstance(result, str):
        return PlainTextResponse(result)
    return JSONResponse(result)


class Router(Middleware):
    """Ordered path+verb route table. First match wins."""

    def __init__(self, prefix: str = "", name: str | None = None) -> None:
        self._prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        self._name = name or f"Router-{next(_router_ids)}"
        self._routes: list[RouteBinding] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def routes(self) -> list[RouteBinding]:
        return list(self._routes)

    def add_route(self, path: str, endpoint: Endpoint, methods: list[str] | tuple[str, ...] = ("GET",)) -> None:
        full_path = self._prefix + ("/" + path.lstrip("/") if path.strip("/") else "")
        full_path = full_path or "/"
        regex, _, convertors = compile_path(full_path)
        for method in methods:
            self._routes.append(RouteBinding(method.upper(), full_path, regex, convertors, endpoint))
            logger.debug("route_registered", router=self._name, method=method.upper(), path=full_path)

    def route(self, path: str, methods: list[str] | tuple[str, ...] = ("GET",)) -> Callable[[Endpoint], Endpoint]:
        def decorator(endpoint: Endpoint) -> Endpoint:
            self.add_route(path, endpoint, methods)
            return endpoint

        return decorator

    def get(self, path: str) -> Callable[[Endpoint], Endpoint]:
        return self.route(path, ("GET",))

    def post(self, path: str) -> Callable[[Endpoint], Endpoint]:
        return self.route(path, ("POST",))

    def put(self, path: str) -> Callable[[Endpoint], Endpoint]:
        return self.route(path, ("PUT",))

    def patch(self, path: str) -> Callable[[Endpoint], Endpoint]:
        return self.route(path, ("PATCH",))

    def delete(self, path: str) -> Callable[[Endpoint], Endpoint]:
        return self.route(path, ("DELETE",))

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        path = request.url.path
        for route in self._routes:
            params = route.match(request.method, path)
            if params is None:
                continue
            context.path_params = params
            request.scope["path_params"] = params
            result = route.endpoint(request, context)
            if inspect.isawaitable(result):
                result = await result
            return Respond(to_response(result))
        return CONTINUE
