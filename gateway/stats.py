"""Request and connection counters owned by a gateway instance."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class GatewayStats:
    """Monotonic request count plus the live streaming-client gauge.

    All mutation happens on the event loop thread without an await between
    read and write, so no lock is needed.
    """

    total_requests: int = 0
    active_stream_clients: int = 0

    def record_request(self) -> None:
        self.total_requests += 1

    def stream_connected(self) -> None:
        self.active_stream_clients += 1

    def stream_disconnected(self) -> None:
        if self.active_stream_clients > 0:
            self.active_stream_clients -= 1

    def snapshot(self) -> dict[str, int]:
        return asdict(self)
