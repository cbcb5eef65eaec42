"""Request counter stage, first in the chain."""

from __future__ import annotations

from starlette.requests import Request

from gateway.middleware.pipeline import CONTINUE, Middleware, Outcome, RequestContext
from gateway.stats import GatewayStats


class RequestCounter(Middleware):
    """Bump ``total_requests`` for every request that enters the gateway."""

    def __init__(self, stats: GatewayStats) -> None:
        self._stats = stats

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        self._stats.record_request()
        return CONTINUE
