import json
from dataclasses import dataclass

from gatewaycore.internal_metrics import Collector


@dataclass
class _Point:
    metric: str
    value: int


def _fail(_):
    raise RuntimeError("blarg")


def test_empty_source_renders_empty_array():
    c = Collector(lambda: [])
    status, headers, body = c.render()
    assert status == 200
    assert body == b"[]"
    assert ("Content-Type", "application/json") in headers
    assert ("Content-Length", "2") in headers


def test_encode_failure_renders_error():
    c = Collector(lambda: [], encode=_fail)
    status, headers, body = c.render()
    assert status == 500
    assert body == b"blarg\n"
    assert ("Content-Type", "text/plain; charset=utf-8") in headers


def test_dataclass_points_encoded():
    c = Collector(lambda: [_Point("cpu", 3), _Point("mem", 4)])
    _, _, body = c.render()
    assert json.loads(body) == [
        {"metric": "cpu", "value": 3},
        {"metric": "mem", "value": 4},
    ]


def test_source_called_each_request():
    values = iter([[_Point("a", 1)], [_Point("b", 2)]])
    c = Collector(lambda: next(values))
    assert json.loads(c.render()[2])[0]["metric"] == "a"
    assert json.loads(c.render()[2])[0]["metric"] == "b"


def test_wsgi_success():
    seen = {}

    def start_response(status, headers):
        seen["status"] = status
        seen["headers"] = headers

    body = Collector(lambda: [])({"PATH_INFO": "/internal-metrics"}, start_response)
    assert seen["status"] == "200 OK"
    assert b"".join(body) == b"[]"


def test_wsgi_error():
    seen = {}

    def start_response(status, headers):
        seen["status"] = status

    body = Collector(lambda: [], encode=_fail)({}, start_response)
    assert seen["status"] == "500 Internal Server Error"
    assert b"".join(body) == b"blarg\n"