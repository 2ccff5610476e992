"""HTTP endpoint that reports the gateway's own datapoints as JSON."""

from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any, Callable, Iterable

_STATUS_TEXT = {200: "200 OK", 500: "500 Internal Server Error"}


def _to_jsonable(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if hasattr(obj, "__dict__"):
        return vars(obj)
    raise TypeError(f"cannot encode {type(obj).__name__} as JSON")


def _default_encode(datapoints: list[Any]) -> str:
    return json.dumps(datapoints, default=_to_jsonable, separators=(",", ":"))


class Collector:
    """Serves collected datapoints as a JSON array.

    ``source`` is called on every request and returns the datapoints to
    report; ``encode`` turns that list into JSON text or bytes.
    """

    def __init__(
        self,
        source: Callable[[], Iterable[Any]],
        encode: Callable[[list[Any]], str | bytes] | None = None,
    ) -> None:
        self._source = source
        self._encode = encode or _default_encode

    def render(self) -> tuple[int, list[tuple[str, str]], bytes]:
        """Return the status code, headers and body of a metrics response."""
        try:
            encoded = self._encode(list(self._source()))
            body = encoded.encode("utf-8") if isinstance(encoded, str) else bytes(encoded)
        except Exception as exc:  # any encoding failure becomes a 500
            body = f"{exc}\n".encode("utf-8")
            return (
                500,
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                    ("Content-Length", str(len(body))),
                ],
                body,
            )
        return (
            200,
            [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
            ],
            body,
        )

    def __call__(self, environ: dict, start_response: Callable) -> list[bytes]:
        status, headers, body = self.render()
        start_response(_STATUS_TEXT[status], headers)
        return [body]