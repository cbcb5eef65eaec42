"""Generic CRUD-to-event bridge.

Each registered resource gets six route bindings whose handlers turn the
HTTP request into a typed CRUD event, send it to the data layer, and wait
for the single answer:

    POST   /path         create(name, body)
    GET    /path         read(name, {})
    POST   /path/query   read(name, body)
    GET    /path/{id}    read(name, id)
    PUT    /path/{id}    update(name, id, body)
    DELETE /path/{id}    delete(name, id)

An error answer becomes a 500 carrying the error payload, a result becomes
a 200 carrying the result. A data layer that never answers is cut off by
the data layer's timeout and surfaces through the error stage as 504.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from gateway.errors import DataLayerError
from gateway.hub import DataLayer
from gateway.middleware.pipeline import RequestContext
from gateway.middleware.router import Router
from gateway.models.crud import Create, CrudEvent, Delete, Read, ResourceDescriptor, Update

logger = structlog.get_logger()


def _send(payload: Any, status_code: int) -> Response:
    if payload is None:
        return Response(status_code=status_code)
    if isinstance(payload, bytes):
        return Response(content=payload, status_code=status_code)
    if isinstance(payload, str):
        return PlainTextResponse(payload, status_code=status_code)
    return JSONResponse(payload, status_code=status_code)


class CrudBridge:
    """Mount CRUD routes for resource descriptors.

    Every accepted descriptor gets its own router from ``mount_router``, so
    its routes sit in the chain at the point the resource was registered and
    run after any middleware registered before it.
    """

    def __init__(self, data_layer: DataLayer, mount_router: Callable[[str], Router]) -> None:
        self._data_layer = data_layer
        self._mount_router = mount_router
        self._routers: list[Router] = []
        self._resources: dict[str, ResourceDescriptor] = {}

    @property
    def routers(self) -> list[Router]:
        return list(self._routers)

    @property
    def resources(self) -> list[ResourceDescriptor]:
        return list(self._resources.values())

    def register(self, descriptor: ResourceDescriptor | dict[str, Any]) -> bool:
        """Bind the CRUD routes for ``descriptor``.

        An incomplete descriptor is logged and skipped; this never raises.
        Returns whether routes were bound.
        """
        try:
            desc = (
                descriptor
                if isinstance(descriptor, ResourceDescriptor)
                else ResourceDescriptor.model_validate(descriptor)
            )
        except ValidationError as exc:
            logger.warning("crud_registration_rejected", reason=str(exc.errors()[0]["msg"]))
            return False

        if not desc.is_complete:
            logger.warning(
                "crud_registration_rejected",
                resource=desc.name,
                path=desc.path,
                reason="name and path are both required",
            )
            return False

        name, path = desc.name, desc.path
        router = self._mount_router(name)
        self._routers.append(router)

        async def create(request: Request, context: RequestContext) -> Response:
            return await self._dispatch(Create(name, body=context.body))

        async def read_all(request: Request, context: RequestContext) -> Response:
            return await self._dispatch(Read(name, query={}))

        async def query(request: Request, context: RequestContext) -> Response:
            body = context.body if context.body is not None else {}
            return await self._dispatch(Read(name, query=body))

        async def read_one(request: Request, context: RequestContext) -> Response:
            return await self._dispatch(Read(name, query=context.path_params["id"]))

        async def update(request: Request, context: RequestContext) -> Response:
            return await self._dispatch(Update(name, id=context.path_params["id"], body=context.body))

        async def delete(request: Request, context: RequestContext) -> Response:
            return await self._dispatch(Delete(name, id=context.path_params["id"]))

        router.add_route(path, create, ["POST"])
        router.add_route(path, read_all, ["GET"])
        router.add_route(f"{path}/query", query, ["POST"])
        router.add_route(f"{path}/{{id}}", read_one, ["GET"])
        router.add_route(f"{path}/{{id}}", update, ["PUT"])
        router.add_route(f"{path}/{{id}}", delete, ["DELETE"])

        self._resources[name] = desc
        logger.info("crud_registered", resource=name, path=path)
        return True

    async def _dispatch(self, event: CrudEvent) -> Response:
        try:
            result = await self._data_layer.dispatch(event)
        except DataLayerError as exc:
            logger.info("crud_error", verb=event.verb.value, resource=event.name, error=str(exc.payload))
            return _send(exc.payload, 500)
        return _send(result, 200)
