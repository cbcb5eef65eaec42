"""
hub-gateway CLI: run an HTTP gateway on an in-process event hub
"""
import argparse
import asyncio
import signal
import sys

import structlog

from gateway.config.loader import load_settings
from gateway.hub import EventHub
from gateway.logging_config import setup_logging
from gateway.main import HttpGateway

logger = structlog.get_logger()


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="hub-gateway - HTTP gateway for a publish/subscribe event hub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on the defaults (127.0.0.1:3000)
  python -m gateway

  # Bind all interfaces and expose a CRUD resource
  python -m gateway --bind 0.0.0.0 --port 8080 --crud widgets=/widgets

  # Load settings from a YAML file (GATEWAY_* env vars still win)
  python -m gateway --config gateway.yaml
        """
    )
    parser.add_argument('--config', help='YAML settings file')
    parser.add_argument('--bind', help='Address to bind, 0.0.0.0 for all interfaces')
    parser.add_argument('--port', type=int, help='Port to bind')
    parser.add_argument('--cors', help='CORS origin policy ("*", an origin, or "" to disable)')
    parser.add_argument('--crud', action='append', default=[], metavar='NAME=PATH',
                        help='Expose CRUD routes for a resource (repeatable)')
    parser.add_argument('--no-websocket', action='store_true',
                        help='Disable the streaming WebSocket endpoint')
    parser.add_argument('--log-level', choices=['debug', 'info', 'warning', 'error'],
                        help='Log level')
    parser.add_argument('--console-logs', action='store_true',
                        help='Human-readable logs instead of JSON')

    args = parser.parse_args()

    overrides = {}
    if args.bind:
        overrides['bind'] = args.bind
    if args.port is not None:
        overrides['port'] = args.port
    if args.cors is not None:
        overrides['cors'] = args.cors or None
    if args.no_websocket:
        overrides['enable_websocket'] = False
    if args.log_level:
        overrides['log_level'] = args.log_level
    if args.console_logs:
        overrides['log_json'] = False

    try:
        return asyncio.run(run(args.config, overrides, args.crud))
    except KeyboardInterrupt:
        return 0


async def run(config_file, overrides, crud_resources):
    """Start a gateway and serve until interrupted or the hub asks to shut down."""
    settings = load_settings(config_file=config_file, **overrides)
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)

    exit_code = 0
    done = asyncio.Event()

    def _exit(code):
        nonlocal exit_code
        exit_code = code
        done.set()

    hub = EventHub(exit_func=_exit)
    gateway = HttpGateway(hub, settings)

    for entry in crud_resources:
        name, _, path = entry.partition('=')
        gateway.crud({'name': name, 'path': path or f'/{name}'})

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except (RuntimeError, NotImplementedError):
            pass  # Not supported on this platform

    if await gateway.start():
        waiter = asyncio.create_task(done.wait())
        closed = asyncio.create_task(gateway.wait_closed())
        await asyncio.wait([waiter, closed], return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        closed.cancel()
        await gateway.stop()

    logger.info("gateway_exiting", exit_code=exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
