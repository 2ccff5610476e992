import io
import json
import os
import signal
import threading
import time
from types import SimpleNamespace

import pytest

from gatewaycore.gateway import (
    BUILD_DATE,
    DuplicateNameError,
    GatewayFlags,
    VERSION,
    check_unique_names,
    close_all,
    component_name,
    first_error,
    group_dimensions,
    main,
    parse_flags,
    remove_pid_file,
    total_pipeline,
    wait_for_drain,
    write_pid_file,
)
from gatewaycore.logging import KVLogger


def test_parse_flags_defaults():
    flags = parse_flags([])
    assert flags.config_file_name == "sf/gateway.conf"
    assert flags.version is False
    assert flags.operation.is_set() is False


def test_parse_flags_values():
    flags = parse_flags(["-configfile", "other.conf", "-cluster-op", "seed", "-version"])
    assert flags.config_file_name == "other.conf"
    assert flags.version is True
    assert str(flags.operation) == "seed"


def test_apply_to_overrides_cluster_operation():
    flags = parse_flags(["--cluster-op", "join"])
    settings = flags.apply_to({"ClusterOperation": "seed"})
    assert settings["ClusterOperation"] == "join"


def test_apply_to_leaves_settings_when_unset():
    flags = GatewayFlags()
    settings = flags.apply_to({"ClusterOperation": "seed"})
    assert settings == {"ClusterOperation": "seed"}


def test_apply_to_empty_string_counts_as_set():
    flags = parse_flags(["-cluster-op", ""])
    settings = flags.apply_to({"ClusterOperation": "seed"})
    assert settings["ClusterOperation"] == ""


def test_component_name():
    assert component_name(SimpleNamespace(name="primary", type="signalfx")) == "primary"
    assert component_name(SimpleNamespace(name=None, type="carbon")) == "carbon"


def test_check_unique_names_ok():
    assert check_unique_names(["a", "b", "c"], "listener") == ["a", "b", "c"]


def test_check_unique_names_duplicate():
    with pytest.raises(DuplicateNameError) as info:
        check_unique_names(["signalfx", "carbon", "signalfx"], "forwarder")
    assert info.value.name == "signalfx"
    assert str(info.value) == "cannot duplicate forwarder names or types without names"


def test_group_dimensions_fixed_keys_win():
    dims = group_dimensions({"env": "prod", "name": "other"}, "fw", "forwarder", "h1", "csv", "c1")
    assert dims["env"] == "prod"
    assert dims["name"] == "fw"
    assert dims["source"] == "gateway"
    assert dims["direction"] == "forwarder"
    assert dims["host"] == "h1"
    assert dims["type"] == "csv"
    assert dims["cluster"] == "c1"


def test_group_dimensions_without_additional():
    dims = group_dimensions(None, "l", "listener", "h", "carbon", "c")
    assert set(dims) == {"name", "direction", "source", "host", "type", "cluster"}


def test_first_error():
    err = ValueError("x")
    assert first_error(None, err, KeyError("y")) is err
    assert first_error(None, None) is None
    assert first_error() is None


class _Closable:
    def __init__(self, fail=False):
        self.fail = fail
        self.closed = False

    def close(self):
        self.closed = True
        if self.fail:
            raise RuntimeError("boom")


def test_close_all_collects_errors_in_order():
    items = [_Closable(), _Closable(fail=True), _Closable()]
    errors = close_all(items)
    assert all(item.closed for item in items)
    assert errors[0] is None and errors[2] is None
    assert isinstance(errors[1], RuntimeError)


def test_close_all_empty():
    assert close_all([]) == []


def test_total_pipeline():
    forwarders = [SimpleNamespace(pipeline=lambda: 3), SimpleNamespace(pipeline=lambda: 4)]
    assert total_pipeline(forwarders) == 7
    assert total_pipeline([]) == 0


def test_wait_for_drain_returns_when_empty():
    out = io.StringIO()
    start = time.monotonic()
    assert wait_for_drain(lambda: 0, 5.0, 0.01, 1.0, KVLogger(out)) is True
    assert time.monotonic() - start < 2.0
    assert "Waiting for connections to drain" in out.getvalue()


def test_wait_for_drain_times_out():
    out = io.StringIO()
    assert wait_for_drain(lambda: 5, 0.1, 0.01, 0.0, KVLogger(out)) is False
    text = out.getvalue()
    assert "Connections never drained" in text
    assert "Items are still draining..." in text


def test_wait_for_drain_drains_eventually():
    counts = iter([3, 2, 1, 0])
    assert wait_for_drain(lambda: next(counts, 0), 5.0, 0.01, 10.0) is True


def test_pid_file_round_trip(tmp_path):
    path = str(tmp_path / "gateway.pid")
    assert write_pid_file(path) is True
    with open(path, encoding="ascii") as handle:
        assert int(handle.read()) == os.getpid()
    assert remove_pid_file(path) is True
    assert not os.path.exists(path)


def test_remove_missing_pid_file_logs(tmp_path):
    out = io.StringIO()
    assert remove_pid_file(str(tmp_path / "missing.pid"), KVLogger(out)) is False
    assert "err=" in out.getvalue()


def test_write_pid_file_into_missing_dir_logs(tmp_path):
    out = io.StringIO()
    path = str(tmp_path / "nope" / "gateway.pid")
    assert write_pid_file(path, KVLogger(out)) is False
    assert "cannot store pid in pid file" in out.getvalue()


def test_main_version(capsys):
    assert main(["-version"]) == 0
    lines = capsys.readouterr().out.split("\n")
    assert lines[0] == VERSION
    assert lines[1] == BUILD_DATE


def test_main_missing_config(tmp_path, capsys):
    assert main(["-configfile", str(tmp_path / "absent.conf")]) == 1
    assert "an error occurred while loading the config file" in capsys.readouterr().err


def test_main_runs_until_sigterm(tmp_path):
    pid_path = tmp_path / "gateway.pid"
    conf = tmp_path / "gateway.conf"
    conf.write_text(json.dumps({"PidFilename": str(pid_path), "LogDir": "-"}))

    def terminate_when_ready():
        deadline = time.monotonic() + 10
        while not pid_path.exists() and time.monotonic() < deadline:
            time.sleep(0.01)
        os.kill(os.getpid(), signal.SIGTERM)

    killer = threading.Thread(target=terminate_when_ready)
    killer.start()
    status = main(["-configfile", str(conf)])
    killer.join()
    assert status == 0
    assert not pid_path.exists()