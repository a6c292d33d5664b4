"""Event sinks for task event streams.

The pipeline runner emits events into exactly one sink per run. Three
implementations exist:

- EventBus: synchronous dispatch to handlers subscribed by event type (CLI).
- NullEventBus: discards everything (background runs nobody watches).
- EventStream: bounded, thread-safe queue drained by an HTTP response.
"""

import queue
from collections.abc import Callable, Iterator
from typing import Any, Protocol, TypeVar

from waypoint.contracts.errors import TransportError
from waypoint.contracts.events import TaskEvent, is_closing
from waypoint.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class EventSink(Protocol):
    """Anything the runner can emit task events into.

    emit() may raise TransportError; the runner logs it and carries on,
    because delivery failures never change task state.
    """

    def emit(self, event: TaskEvent) -> None: ...


class EventBus:
    """Simple synchronous event bus.

    Handlers are called in subscription order. Handler exceptions propagate
    to the caller.

    Example:
        bus = EventBus()
        bus.subscribe(ProgressEvent, lambda e: print(f"{e.progress}% {e.message}"))
        runner.run(task_id, bus)
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(handler)

    def emit(self, event: TaskEvent) -> None:
        """Dispatch an event. Events with no subscribers are ignored."""
        handlers = self._subscribers.get(type(event), [])
        for handler in handlers:
            handler(event)


class NullEventBus:
    """No-op sink for runs without an observer.

    Does NOT inherit from EventBus: subscribing to it would silently never
    fire, so it offers no subscribe() at all.
    """

    def emit(self, event: TaskEvent) -> None:
        pass


_END = object()


class EventStream:
    """Bounded queue bridging a runner thread to a streaming response.

    The runner thread calls emit(); the response iterates the stream and
    stops after the first closing event (done, error, cancelled, paused) or
    after end() is called.

    A consumer that stops reading (client disconnected) is detected when the
    queue stays full for ``put_timeout`` seconds. The stream then detaches:
    emit() raises TransportError once and drops every later event, so the
    run itself is never blocked by a dead observer.
    """

    def __init__(self, *, maxsize: int = 256, put_timeout: float = 30.0) -> None:
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._detached = False

    @property
    def detached(self) -> bool:
        return self._detached

    def emit(self, event: TaskEvent) -> None:
        """Queue an event for the consumer.

        Raises:
            TransportError: If the consumer stopped reading
        """
        if self._detached:
            return
        try:
            self._queue.put(event, timeout=self._put_timeout)
        except queue.Full:
            self._detached = True
            raise TransportError(f"Event stream consumer stalled for {self._put_timeout}s; stream detached") from None

    def end(self) -> None:
        """Signal that no more events will be emitted."""
        if self._detached:
            return
        try:
            self._queue.put(_END, timeout=self._put_timeout)
        except queue.Full:
            self._detached = True
            logger.warning("event_stream_end_dropped")

    def close(self) -> None:
        """Consumer-side close: detach and discard anything buffered."""
        self._detached = True
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def __iter__(self) -> Iterator[TaskEvent]:
        while True:
            item = self._queue.get()
            if item is _END:
                return
            event: TaskEvent = item  # type: ignore[assignment]  # only TaskEvents and _END are queued
            yield event
            if is_closing(event):
                return
