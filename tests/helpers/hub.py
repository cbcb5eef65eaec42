"""Hub test double that records everything the gateway publishes."""

from __future__ import annotations

from typing import Any

from gateway.hub import EventHub


class RecordingHub(EventHub):
    """A real ``EventHub`` that also keeps a log of emits, ready and shutdown calls.

    ``shutdown`` never exits the test process.
    """

    def __init__(self) -> None:
        super().__init__(exit_func=self._record_exit)
        self.emitted: list[tuple[str, tuple[Any, ...]]] = []
        self.ready_messages: list[tuple[str, str]] = []
        self.shutdown_calls = 0
        self.exit_codes: list[int] = []

    def _record_exit(self, code: int) -> None:
        self.exit_codes.append(code)

    def emit(self, event: str, *args: Any) -> None:
        self.emitted.append((event, args))
        super().emit(event, *args)

    def ready(self, source: str, message: str) -> None:
        self.ready_messages.append((source, message))
        super().ready(source, message)

    def shutdown(self) -> None:
        self.shutdown_calls += 1
        super().shutdown()

    def events_named(self, name: str) -> list[tuple[Any, ...]]:
        return [args for event, args in self.emitted if event == name]


def serve_crud(hub: EventHub, answers: dict[str, tuple[Any, Any]], calls: list | None = None) -> None:
    """Subscribe a data layer that answers each verb with a fixed ``(err, result)``."""

    def _make(verb: str):
        def _handler(*args: Any) -> None:
            *payload, callback = args
            if calls is not None:
                calls.append((verb, tuple(payload)))
            if verb in answers:
                err, result = answers[verb]
                callback(err, result)

        return _handler

    for verb in ("create", "read", "update", "delete"):
        hub.on(verb, _make(verb))
