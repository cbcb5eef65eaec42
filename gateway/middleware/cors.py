"""CORS policy stage."""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from gateway.middleware.pipeline import CONTINUE, Middleware, Outcome, RequestContext, Respond

logger = structlog.get_logger()

ALLOWED_METHODS = "GET,HEAD,PUT,PATCH,POST,DELETE"

CorsPolicy = str | list[str] | None


def normalize_policy(policy: CorsPolicy) -> CorsPolicy:
    """Collapse the disabled forms (``None``, ``""``, ``[]``) to ``None``."""
    if isinstance(policy, (list, tuple)):
        policy = [origin for origin in policy if origin] or None
    return policy or None


def announce_policy(policy: CorsPolicy) -> None:
    """Log the effective policy, with a warning when it lets any site make credentialed requests."""
    policy = normalize_policy(policy)
    if policy == "*":
        logger.warning("cors_wildcard_with_credentials", policy="*")
    logger.info("cors_policy", policy=policy)


class CorsPolicyStage(Middleware):
    """Annotate responses with CORS headers according to the origin policy.

    Credentials are always allowed. Under a ``"*"`` policy the request's
    ``Origin`` is echoed instead of a literal wildcard, which browsers reject
    together with credentials. That combination lets any site make
    credentialed requests; the gateway reports it through ``announce_policy``
    when it starts listening. A request without an ``Origin`` gets no
    allow-origin header at all under ``"*"``.
    A disabled policy (``None``, ``""`` or ``[]``) leaves requests untouched.
    """

    def __init__(self, policy: CorsPolicy) -> None:
        self._policy = normalize_policy(policy)

    @property
    def policy(self) -> CorsPolicy:
        return self._policy

    @property
    def enabled(self) -> bool:
        return self._policy is not None

    def allowed_origin(self, origin: str) -> tuple[str | None, bool]:
        """Return the allow-origin value for a request origin and whether it varies by origin."""
        policy = self._policy
        if policy is None:
            return None, False
        if policy == "*":
            return (origin or None), True
        if isinstance(policy, str):
            return policy, False
        return (origin if origin in policy else None), True

    async def process_request(self, request: Request, context: RequestContext) -> Outcome:
        if not self.enabled:
            return CONTINUE
        context.extra["cors_origin"] = request.headers.get("origin", "")
        is_preflight = (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        )
        if not is_preflight:
            return CONTINUE
        response = Response(status_code=204)
        response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
        requested_headers = request.headers.get("access-control-request-headers")
        if requested_headers:
            response.headers["Access-Control-Allow-Headers"] = requested_headers
            response.headers.add_vary_header("Access-Control-Request-Headers")
        return Respond(response)

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        if not self.enabled:
            return response
        origin = context.extra.get("cors_origin", "")
        value, varies = self.allowed_origin(origin)
        if varies:
            response.headers.add_vary_header("Origin")
        if value is None:
            return response
        response.headers["Access-Control-Allow-Origin"] = value
        response.headers["Access-Control-Allow-Credentials"] = "true"
        return response
