"""Builds forwarders and listeners from configuration by their type name."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

ForwarderFactory = Callable[[Any], Any]
ListenerFactory = Callable[[Any, Any], Any]


class LoaderError(ValueError):
    """Raised when a configuration names no type or an unknown type."""


class _SinkWrapper(Protocol):
    def wrap_sink(self, sink: Any, conf: Any) -> Any: ...


def _merged(base: Mapping[str, str] | None, extra: Mapping[str, str]) -> dict[str, str]:
    merged = dict(base or {})
    merged.update(extra)
    return merged


class DimensionsAddingSink:
    """Adds fixed dimensions to everything passed on to another sink.

    Datapoints and events get the dimensions merged into their
    ``dimensions`` attribute and spans into their ``tags`` attribute;
    the configured dimensions win over values already present.
    """

    def __init__(self, dimensions: Mapping[str, str], sink: Any) -> None:
        self.dimensions = dict(dimensions)
        self.sink = sink

    def _tag(self, items: Sequence[Any], attribute: str) -> list[Any]:
        batch = list(items)
        for item in batch:
            setattr(item, attribute, _merged(getattr(item, attribute, None), self.dimensions))
        return batch

    def add_datapoints(self, points: Sequence[Any]) -> Any:
        """Add the dimensions to each datapoint and pass them on."""
        return self.sink.add_datapoints(self._tag(points, "dimensions"))

    def add_events(self, events: Sequence[Any]) -> Any:
        """Add the dimensions to each event and pass them on."""
        return self.sink.add_events(self._tag(events, "dimensions"))

    def add_spans(self, spans: Sequence[Any]) -> Any:
        """Add the dimensions to each span's tags and pass them on."""
        return self.sink.add_spans(self._tag(spans, "tags"))


class DimensionListenerWrapper:
    """Wraps a listener's sink so it adds the listener's configured dimensions."""

    def wrap_sink(self, sink: Any, conf: Any) -> Any:
        """Return the sink unchanged when no dimensions are configured."""
        dimensions = getattr(conf, "dimensions", None)
        if not dimensions:
            return sink
        return DimensionsAddingSink(dimensions, sink)


class Loader:
    """Looks up forwarder and listener factories by configuration type."""

    def __init__(
        self,
        forwarders: Mapping[str, ForwarderFactory] | None = None,
        listeners: Mapping[str, ListenerFactory] | None = None,
        listen_wrappers: Iterable[_SinkWrapper] | None = None,
    ) -> None:
        self._forwarders: dict[str, ForwarderFactory] = dict(forwarders or {})
        self._listeners: dict[str, ListenerFactory] = dict(listeners or {})
        self._listen_wrappers: list[_SinkWrapper] = (
            list(listen_wrappers)
            if listen_wrappers is not None
            else [DimensionListenerWrapper()]
        )

    def register_forwarder(self, type_name: str, factory: ForwarderFactory) -> None:
        """Make ``factory(conf)`` build forwarders of this type."""
        self._forwarders[type_name] = factory

    def register_listener(self, type_name: str, factory: ListenerFactory) -> None:
        """Make ``factory(sink, conf)`` build listeners of this type."""
        self._listeners[type_name] = factory

    @staticmethod
    def _type_of(conf: Any) -> str:
        type_name = getattr(conf, "type", "") or ""
        if not type_name:
            raise LoaderError("type required to load config")
        return type_name

    def forwarder(self, conf: Any) -> Any:
        """Build the forwarder that ``conf.type`` names."""
        type_name = self._type_of(conf)
        factory = self._forwarders.get(type_name)
        if factory is None:
            raise LoaderError(f"cannot find config {type_name}")
        return factory(conf)

    def listener(self, sink: Any, conf: Any) -> Any:
        """Build the listener that ``conf.type`` names, feeding a wrapped sink."""
        type_name = self._type_of(conf)
        wrapped = sink
        for wrapper in self._listen_wrappers:
            wrapped = wrapper.wrap_sink(wrapped, conf)
        factory = self._listeners.get(type_name)
        if factory is None:
            raise LoaderError(f"cannot find config {type_name}")
        return factory(wrapped, conf)