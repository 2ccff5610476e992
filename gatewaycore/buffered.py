"""A forwarder that buffers items and sends them downstream in large batches."""

from __future__ import annotations

import collections
import dataclasses
import threading
from concurrent.futures import CancelledError
from typing import Any, Callable, Mapping, Protocol, Sequence

from .logging import CONFIG, ERR, STRUCT, KVLogger

_POLL_SECONDS = 0.01


class _Sink(Protocol):
    def add_datapoints(self, points: list[Any], cancel: threading.Event) -> Any: ...

    def add_events(self, events: list[Any], cancel: threading.Event) -> Any: ...

    def add_spans(self, spans: list[Any], cancel: threading.Event) -> Any: ...


@dataclasses.dataclass
class BufferedConfig:
    """Limits for a :class:`BufferedForwarder`; unset fields take defaults.

    ``checker`` is an optional object with ``has_flag()``,
    ``has_datapoint_flag(dp)`` and ``has_event_flag(ev)`` methods used to
    decide which calls and items are logged for debugging.
    """

    buffer_size: int | None = None
    max_total_datapoints: int | None = None
    max_total_events: int | None = None
    max_total_spans: int | None = None
    max_drain_size: int | None = None
    num_draining_threads: int | None = None
    checker: Any = None
    name: str | None = None

    def _with_defaults(self) -> BufferedConfig:
        missing = {
            field.name: getattr(DEFAULT_CONFIG, field.name)
            for field in dataclasses.fields(self)
            if getattr(self, field.name) is None
        }
        return dataclasses.replace(self, **missing)

    def __str__(self) -> str:
        return (
            f"Config [BufferSize: {self.buffer_size} "
            f"MaxTotalDatapoints: {self.max_total_datapoints} "
            f"MaxTotalEvents: {self.max_total_events} "
            f"MaxTotalSpans: {self.max_total_spans} "
            f"MaxDrainSize: {self.max_drain_size} "
            f"NumDrainingThreads: {self.num_draining_threads}"
        )


DEFAULT_CONFIG = BufferedConfig(
    buffer_size=1_000_000,
    max_total_datapoints=1_000_000,
    max_total_events=1_000_000,
    max_total_spans=1_000_000,
    max_drain_size=30_000,
    num_draining_threads=10,
    name="",
)


class BufferFullError(Exception):
    """Raised when a forwarder already holds its maximum number of items."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(
            f"Forwarder {identifier} unable to send more {kind}.  Buffer full"
        )
        self.kind = kind
        self.identifier = identifier


@dataclasses.dataclass(frozen=True)
class Gauge:
    """A single gauge reading about the forwarder itself."""

    metric: str
    dimensions: Mapping[str, str] | None
    value: int


class _Channel:
    """A bounded queue of batches with hand-off semantics like a Go channel.

    A put succeeds when there is buffer room or a receiver is waiting, so a
    capacity of zero still lets a sender meet a ready receiver.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._items: collections.deque[list[Any]] = collections.deque()
        self._cond = threading.Condition()
        self._waiting = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def put(self, item: list[Any], abort: Callable[[], bool]) -> bool:
        with self._cond:
            while len(self._items) >= self._capacity + self._waiting:
                if abort():
                    return False
                self._cond.wait(_POLL_SECONDS)
            self._items.append(item)
            self._cond.notify_all()
            return True

    def get(self, abort: Callable[[], bool]) -> list[Any] | None:
        with self._cond:
            self._waiting += 1
            try:
                while not self._items:
                    if abort():
                        return None
                    self._cond.wait(_POLL_SECONDS)
            finally:
                self._waiting -= 1
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def get_nowait(self) -> list[Any] | None:
        with self._cond:
            if not self._items:
                return None
            item = self._items.popleft()
            self._cond.notify_all()
            return item


@dataclasses.dataclass
class _Lane:
    kind: str
    send_method: str
    max_total: int
    channel: _Channel
    flag_method: str | None = None
    log_key: str | None = None
    noun: str | None = None
    buffered: int = 0
    in_flight: int = 0
    drain_lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)


class BufferedForwarder:
    """Buffers datapoints, events and spans and drains them to a sink.

    Items handed to the ``add_*`` methods are queued; draining threads
    merge queued batches up to ``max_drain_size`` and pass them to
    ``send_to``. Setting ``parent`` stops the forwarder as ``close`` does,
    without waiting for the threads.
    """

    def __init__(
        self,
        config: BufferedConfig | None,
        send_to: _Sink,
        close_sender: Callable[[], Any] | None = None,
        after_startup: Callable[[], Any] | None = None,
        logger: KVLogger | None = None,
        debug_endpoints: Callable[[], Mapping[str, Any]] | None = None,
        parent: threading.Event | None = None,
    ) -> None:
        self._config = (config or BufferedConfig())._with_defaults()
        self._send_to = send_to
        self._close_sender = close_sender
        self._after_startup = after_startup
        self._debug_endpoints = debug_endpoints
        self._parent = parent
        self._stop = threading.Event()
        self._stats_lock = threading.Lock()
        self._checker = self._config.checker
        self._identifier = self._config.name or ""
        self._logger = (
            logger.with_context(STRUCT, "BufferedForwarder") if logger else None
        )
        if self._logger:
            self._logger.log(CONFIG, self._config)

        capacity = self._config.buffer_size
        self._datapoints = _Lane(
            "datapoints", "add_datapoints", self._config.max_total_datapoints,
            _Channel(capacity), "has_datapoint_flag", "dp", "datapoint",
        )
        self._events = _Lane(
            "events", "add_events", self._config.max_total_events,
            _Channel(capacity), "has_event_flag", "ev", "event",
        )
        self._spans = _Lane(
            "traces", "add_spans", self._config.max_total_spans, _Channel(capacity)
        )
        self._threads: list[threading.Thread] = []
        for index in range(self._config.num_draining_threads):
            for lane in (self._datapoints, self._events, self._spans):
                thread = threading.Thread(
                    target=self._drain_forever, args=(lane, index), daemon=True
                )
                self._threads.append(thread)
                thread.start()

    def _stopped(self) -> bool:
        if self._parent is not None and self._parent.is_set():
            self._stop.set()
        return self._stop.is_set()

    def _context_flagged(self) -> bool:
        return bool(self._checker is not None and self._checker.has_flag())

    def _add(self, lane: _Lane, items: Sequence[Any], cancel: threading.Event | None) -> None:
        batch = list(items)
        with self._stats_lock:
            lane.buffered += len(batch)
            if lane.max_total <= lane.buffered:
                lane.buffered -= len(batch)
                raise BufferFullError(lane.kind, self._identifier)

        def aborted() -> bool:
            return self._stopped() or (cancel is not None and cancel.is_set())

        if lane.channel.put(batch, aborted):
            return
        if self._stopped():
            raise CancelledError("forwarder stopped")
        raise CancelledError("operation cancelled")

    def add_datapoints(self, points: Sequence[Any], cancel: threading.Event | None = None) -> None:
        """Queue datapoints; raises BufferFullError or CancelledError."""
        if self._context_flagged() and self._logger:
            self._logger.log("Datapoint call received in buffered forwarder")
        self._add(self._datapoints, points, cancel)

    def add_events(self, events: Sequence[Any], cancel: threading.Event | None = None) -> None:
        """Queue events; raises BufferFullError or CancelledError."""
        if self._context_flagged() and self._logger:
            self._logger.log("Events call received in buffered forwarder")
        self._add(self._events, events, cancel)

    def add_spans(self, spans: Sequence[Any], cancel: threading.Event | None = None) -> None:
        """Queue spans; raises BufferFullError or CancelledError."""
        self._add(self._spans, spans, cancel)

    def datapoints(self) -> list[Gauge]:
        """Gauges describing how much is queued."""
        with self._stats_lock:
            dp_buffered = self._datapoints.buffered
            ev_buffered = self._events.buffered
            tr_buffered = self._spans.buffered
        return [
            Gauge("datapoint_chan_backup_size", None, len(self._datapoints.channel)),
            Gauge("event_chan_backup_size", None, len(self._events.channel)),
            Gauge("datapoint_backup_size", None, dp_buffered),
            Gauge("event_backup_size", None, ev_buffered),
            Gauge("trace_chan_backup_size", None, len(self._spans.channel)),
            Gauge("trace_backup_size", None, tr_buffered),
        ]

    def pipeline(self) -> int:
        """Queued batches plus items currently being sent."""
        lanes = (self._datapoints, self._events, self._spans)
        with self._stats_lock:
            in_flight = sum(lane.in_flight for lane in lanes)
        return in_flight + sum(len(lane.channel) for lane in lanes)

    def _drain(self, lane: _Lane) -> list[Any]:
        with lane.drain_lock:
            first = lane.channel.get(self._stopped)
            if first is None:
                return []
            items = list(first)
            while len(items) < self._config.max_drain_size:
                more = lane.channel.get_nowait()
                if more is None:
                    break
                items.extend(more)
            with self._stats_lock:
                lane.buffered -= len(items)
            return items

    def _log_flagged(self, logger: KVLogger | None, lane: _Lane, items: list[Any], message: str) -> None:
        if logger is None or self._checker is None or lane.flag_method is None:
            return
        has_flag = getattr(self._checker, lane.flag_method)
        for item in items:
            if has_flag(item):
                logger.log(lane.log_key, item, message)

    def _drain_forever(self, lane: _Lane, index: int) -> None:
        logger = self._logger.with_context("draining_index", index) if self._logger else None
        send = getattr(self._send_to, lane.send_method)
        while not self._stopped():
            items = self._drain(lane)
            if not items:
                continue
            self._log_flagged(logger, lane, items, f"about to send {lane.noun}")
            with self._stats_lock:
                lane.in_flight += len(items)
            try:
                send(items, self._stop)
            except Exception as exc:  # a failing sink must not kill the drainer
                if logger:
                    logger.log(ERR, exc, f"error sending {lane.kind}")
            finally:
                with self._stats_lock:
                    lane.in_flight -= len(items)
            self._log_flagged(logger, lane, items, f"Finished sending {lane.noun}")

    def close(self) -> None:
        """Stop the draining threads, wait for them, then close the sender."""
        self._stop.set()
        for thread in self._threads:
            thread.join()
        if self._close_sender is not None:
            self._close_sender()

    def startup_finished(self) -> Any:
        """Run the after-startup hook, if any."""
        if self._after_startup is None:
            return None
        return self._after_startup()

    def debug_endpoints(self) -> dict[str, Any]:
        """HTTP handlers exposed for debugging, keyed by path."""
        if self._debug_endpoints is None:
            return {}
        return dict(self._debug_endpoints())