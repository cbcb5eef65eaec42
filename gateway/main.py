"""HTTP gateway module: lifecycle controller and hub wiring."""

from __future__ import annotations

import asyncio
import enum
import errno
import socket
from typing import Any

import structlog
import uvicorn

from gateway import events
from gateway.api.crud import CrudBridge
from gateway.app import GatewayApp
from gateway.config.loader import GatewaySettings, load_settings, merge_settings
from gateway.hub import Hub, HubDataLayer
from gateway.middleware.cors import announce_policy
from gateway.models.crud import ResourceDescriptor
from gateway.stats import GatewayStats

logger = structlog.get_logger()


class LifecycleState(str, enum.Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    BINDING = "binding"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class HttpGateway:
    """Attach an HTTP server to a hub.

    Subscribes to ``gateway.use``, ``gateway.crud``, ``gateway.start`` and
    ``gateway.stop`` on construction. Middleware and CRUD registrations are
    remembered in order and replayed whenever the app is rebuilt by
    ``configure``.
    """

    def __init__(self, hub: Hub, settings: GatewaySettings | None = None, **overrides: Any) -> None:
        self.hub = hub
        if settings is None:
            settings = load_settings(**overrides)
        elif overrides:
            settings = merge_settings(settings, **overrides)
        self.settings = settings
        self.stats = GatewayStats()
        self.state = LifecycleState.UNCONFIGURED
        self.app: GatewayApp | None = None
        self.bridge: CrudBridge | None = None

        self._registrations: list[tuple[str, Any]] = []
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None
        self._bound_port: int | None = None
        self._announced_settings: GatewaySettings | None = None

        hub.on(events.USE, self.use)
        hub.on(events.CRUD, self.crud)
        hub.on(events.START, self.start)
        hub.on(events.STOP, self.stop)

    @property
    def port(self) -> int | None:
        """The bound port while listening (useful when configured with port 0)."""
        return self._bound_port

    @property
    def server(self) -> uvicorn.Server | None:
        return self._server

    # ── configure ───────────────────────────────────────────

    def configure(self, **overrides: Any) -> GatewayApp:
        """Build the app and chain from the current settings plus ``overrides``.

        A listening server keeps its socket; new settings take effect on the
        next start.
        """
        if overrides:
            self.settings = merge_settings(self.settings, **overrides)
        if self.state in (LifecycleState.BINDING, LifecycleState.LISTENING, LifecycleState.CLOSING):
            logger.warning("reconfigure_deferred", state=self.state.value)
            return self.app

        self.app = GatewayApp(self.settings, self.hub, self.stats)
        self.bridge = None
        for kind, payload in self._registrations:
            if kind == "use":
                self.app.use(payload)
            else:
                self._crud_bridge().register(payload)
        self.state = LifecycleState.CONFIGURED
        logger.debug("gateway_configured", bind=self.settings.bind, port=self.settings.port)
        return self.app

    def _ensure_app(self) -> GatewayApp:
        if self.app is None:
            self.configure()
        return self.app

    def _crud_bridge(self) -> CrudBridge:
        if self.bridge is None:
            data_layer = HubDataLayer(self.hub, timeout=self.settings.crud_timeout)
            self.bridge = CrudBridge(data_layer, lambda name: self.app.router(name=f"crud:{name}"))
        return self.bridge

    # ── registration ────────────────────────────────────────

    def use(self, *middleware: Any) -> None:
        """Append middleware to the chain in registration order."""
        app = self._ensure_app()
        logger.debug("adding_middleware", count=len(middleware))
        for mw in middleware:
            app.use(mw)
            self._registrations.append(("use", mw))

    def crud(self, descriptor: ResourceDescriptor | dict[str, Any]) -> bool:
        """Mount CRUD routes for a resource. Incomplete descriptors are skipped with a warning."""
        self._ensure_app()
        registered = self._crud_bridge().register(descriptor)
        if registered:
            self._registrations.append(("crud", descriptor))
        return registered

    # ── start / stop ────────────────────────────────────────

    async def start(self) -> bool:
        """Bind and serve. Returns whether the gateway is now listening."""
        if self.state in (LifecycleState.UNCONFIGURED, LifecycleState.CLOSED):
            self.configure()
        if self.state is not LifecycleState.CONFIGURED:
            logger.warning("start_ignored", state=self.state.value)
            return False

        logger.debug("gateway_starting")
        app = self.app

        # let other modules mount routes and middleware before the socket binds
        self.hub.emit(events.PRE_START, app)
        self.hub.emit(events.ROUTER, app.router)

        logger.debug("adding_default_error_handler")
        app.install_error_stage()

        self.state = LifecycleState.BINDING
        try:
            sock = self._bind_socket()
        except OSError as exc:
            self._bind_failed(exc)
            return False

        config = uvicorn.Config(
            app,
            host=self.settings.bind,
            port=self.settings.port,
            ssl_keyfile=self.settings.key if self.settings.tls_enabled else None,
            ssl_certfile=self.settings.cert if self.settings.tls_enabled else None,
            lifespan="off",
            proxy_headers=False,
            server_header=False,
            access_log=False,
            log_config=None,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                exc = task.exception() if not task.cancelled() else None
                self._bind_failed(exc or OSError("server exited during startup"))
                return False
            await asyncio.sleep(0.01)

        self._server = server
        self._serve_task = task
        self._socket = sock
        self._bound_port = sock.getsockname()[1]
        task.add_done_callback(self._serve_done(server))
        self.state = LifecycleState.LISTENING

        self.hub.emit(
            events.LISTENING,
            {"bind": self.settings.bind, "port": self._bound_port, "server": server},
        )
        self.hub.ready(
            events.SOURCE,
            f"listening for {self.settings.scheme_label} on {self.settings.bind}:{self._bound_port}",
        )
        if self._announced_settings is not app.settings:
            announce_policy(app.settings.cors)
            self._announced_settings = app.settings
        if app.streams is not None:
            self.hub.emit(events.WEBSOCKET, app.streams)
        return True

    async def stop(self) -> None:
        """Close the listener. A no-op when nothing is listening."""
        server, task = self._server, self._serve_task
        if server is None:
            return
        self._server = None
        self._serve_task = None
        self.state = LifecycleState.CLOSING
        logger.debug("closing_server")

        if self.app is not None and self.app.streams is not None:
            await self.app.streams.close_all()
        server.should_exit = True
        try:
            if task is not None:
                await task
        except Exception:
            logger.exception("server_stop_error")
        finally:
            self._release_socket()
        self.state = LifecycleState.CLOSED
        logger.info("server_closed", message=f"closed {self.settings.scheme_label} server")

    async def wait_closed(self) -> None:
        """Wait until the serving task ends, by ``stop`` or by the server itself."""
        task = self._serve_task
        if task is not None:
            await asyncio.wait([task])

    def _serve_done(self, server: uvicorn.Server):
        def _done(task: asyncio.Task) -> None:
            # stop() clears _server first; anything else means the server ended on its own
            if self._server is not server:
                return
            self._server = None
            self._serve_task = None
            self._release_socket()
            self.state = LifecycleState.CLOSED
            if not task.cancelled() and task.exception() is not None:
                logger.error("server_crashed", error=str(task.exception()))
            logger.info("server_closed", message=f"closed {self.settings.scheme_label} server")

        return _done

    def _release_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._bound_port = None

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.settings.bind else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.settings.bind, self.settings.port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    def _bind_failed(self, exc: BaseException) -> None:
        port = self.settings.port
        if not self.settings.error_on_bind_fail:
            logger.warning(
                "bind_failed_nonfatal",
                message=f"Couldn't bind {port}, set error_on_bind_fail=true to exit here",
                bind=self.settings.bind,
                port=port,
                error=str(exc),
            )
            # fresh chain so a later start() can run pre-start again
            self.state = LifecycleState.UNCONFIGURED
            self.configure()
            return

        if getattr(exc, "errno", None) == errno.EADDRINUSE:
            logger.error(
                "bind_failed",
                message=f"Port {port} is already in use, is another instance running?",
                bind=self.settings.bind,
                port=port,
            )
        else:
            logger.error(
                "bind_failed",
                message="unable to open listen port",
                bind=self.settings.bind,
                port=port,
                error=str(exc),
            )
        self.state = LifecycleState.FAILED
        self.hub.shutdown()
