"""Gateway process wiring: flags, naming checks, shutdown helpers and the entry point."""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, MutableMapping, Sequence

from .flags import StringFlag
from .logging import CONFIG_FILE, ERR, FILENAME, MSG, TIME, TOTAL_PIPELINE, KVLogger, make_logger

VERSION = "0.9.10+"
BUILD_DATE = ""

DEFAULT_CONFIG_FILE = "sf/gateway.conf"
CLUSTER_OP_FLAG = "cluster-op"
VERSION_FLAG = "version"

_DEFAULT_LOG_MAX_SIZE_MB = 100
_DEFAULT_LOG_MAX_BACKUPS = 10
_SIGNAL_POLL_SECONDS = 0.2


class DuplicateNameError(ValueError):
    """Raised when two forwarders or listeners share a name."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"cannot duplicate {kind} names or types without names")
        self.kind = kind
        self.name = name


class GatewayFlags:
    """Runtime options given on the command line."""

    def __init__(self) -> None:
        self.config_file_name = DEFAULT_CONFIG_FILE
        self.operation = StringFlag()
        self.version = False

    def apply_to(self, settings: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        """Override settings with the flags that were given; returns the settings."""
        if self.operation.is_set():
            settings["ClusterOperation"] = str(self.operation)
        return settings


def parse_flags(argv: Sequence[str] | None = None) -> GatewayFlags:
    """Parse command-line arguments into :class:`GatewayFlags`."""
    parser = argparse.ArgumentParser(prog="gateway")
    parser.add_argument(
        "-configfile",
        "--configfile",
        dest="configfile",
        default=DEFAULT_CONFIG_FILE,
        help="Name of the db gateway configuration file",
    )
    parser.add_argument(
        f"-{CLUSTER_OP_FLAG}",
        f"--{CLUSTER_OP_FLAG}",
        dest="cluster_op",
        default=None,
        help='operation to perform if running in cluster mode ["seed", "join", ""] '
        "this overrides the ClusterOperation set in the config file",
    )
    parser.add_argument(
        f"-{VERSION_FLAG}",
        f"--{VERSION_FLAG}",
        dest="version",
        action="store_true",
        help="print the gateway version",
    )
    args = parser.parse_args(argv)
    flags = GatewayFlags()
    flags.config_file_name = args.configfile
    flags.version = args.version
    if args.cluster_op is not None:
        flags.operation.set(args.cluster_op)
    return flags


def component_name(conf: Any) -> str:
    """The configured name of a component, or its type when it has none."""
    name = getattr(conf, "name", None)
    if name is not None:
        return name
    return getattr(conf, "type", "")


def check_unique_names(names: Iterable[str], kind: str) -> list[str]:
    """Return the names in order; raise DuplicateNameError on a repeat."""
    seen: set[str] = set()
    ordered: list[str] = []
    for name in names:
        if name in seen:
            raise DuplicateNameError(kind, name)
        seen.add(name)
        ordered.append(name)
    return ordered


def group_dimensions(
    additional: Mapping[str, str] | None,
    name: str,
    direction: str,
    host: str,
    type_name: str,
    cluster: str,
) -> dict[str, str]:
    """Default dimensions for a component's own metrics; fixed keys win."""
    dims = dict(additional or {})
    dims.update(
        {
            "name": name,
            "direction": direction,
            "source": "gateway",
            "host": host,
            "type": type_name,
            "cluster": cluster,
        }
    )
    return dims


def first_error(*args: BaseException | None) -> BaseException | None:
    """The first argument that is not None, or None."""
    return next((err for err in args if err is not None), None)


def _close_one(closable: Any) -> BaseException | None:
    try:
        closable.close()
    except Exception as exc:  # collected and reported by the caller
        return exc
    return None


def close_all(closables: Sequence[Any]) -> list[BaseException | None]:
    """Close every item concurrently; return each one's error or None, in order."""
    items = list(closables)
    if not items:
        return []
    with ThreadPoolExecutor(max_workers=len(items)) as pool:
        return list(pool.map(_close_one, items))


def total_pipeline(forwarders: Iterable[Any]) -> int:
    """Items in flight across all forwarders."""
    return sum(forwarder.pipeline() for forwarder in forwarders)


def wait_for_drain(
    pipeline: Callable[[], int],
    timeout: float,
    check_interval: float,
    silent_time: float,
    logger: KVLogger | None = None,
) -> bool:
    """Poll ``pipeline`` until it reaches zero or ``timeout`` seconds pass.

    Returns True when everything drained.
    """
    def log(*args: Any) -> None:
        if logger is not None:
            logger.log(*args)

    log("Waiting for connections to drain")
    start = time.monotonic()
    deadline = start + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0 or remaining < check_interval:
            time.sleep(max(remaining, 0))
            total = pipeline()
            if total != 0:
                log(TOTAL_PIPELINE, total, "Connections never drained.  This could be bad ...")
            return total == 0
        time.sleep(check_interval)
        total = pipeline()
        if total == 0:
            return True
        if time.monotonic() - start > silent_time:
            log(TOTAL_PIPELINE, total, "Items are still draining...")


def write_pid_file(path: str, logger: KVLogger | None = None) -> bool:
    """Store this process's id in ``path``; returns whether it worked."""
    try:
        with open(path, "w", encoding="ascii") as handle:
            handle.write(str(os.getpid()))
        os.chmod(path, 0o644)
    except OSError as exc:
        if logger is not None:
            logger.log(ERR, exc, FILENAME, path, "cannot store pid in pid file")
        return False
    return True


def remove_pid_file(path: str, logger: KVLogger | None = None) -> bool:
    """Delete the pid file; returns whether it worked."""
    try:
        os.remove(path)
    except OSError as exc:
        if logger is not None:
            logger.log(ERR, exc)
        return False
    return True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_settings(path: str, flags: GatewayFlags, logger: KVLogger) -> dict[str, Any]:
    logger.log(CONFIG_FILE, path, "Looking for config file")
    with open(path, encoding="utf-8") as handle:
        settings = json.load(handle)
    if not isinstance(settings, dict):
        raise ValueError("configuration must be a JSON object")
    flags.apply_to(settings)
    logger.log("config loaded")
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Run the gateway until SIGTERM or interrupt; returns the exit status."""
    flags = parse_flags(argv)
    if flags.version:
        print(VERSION)
        print(BUILD_DATE)
        return 0

    logger = KVLogger(sys.stderr).with_context(TIME, _now)
    try:
        settings = _load_settings(flags.config_file_name, flags, logger)
    except (OSError, ValueError) as exc:
        logger.log(ERR, exc, "an error occurred while loading the config file")
        logger.log(ERR, "gateway was not configured properly")
        return 1

    stop = threading.Event()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    pid_file = settings.get("PidFilename")
    try:
        if pid_file:
            write_pid_file(pid_file, logger)
        logger = make_logger(
            settings.get("LogDir", "-"),
            int(settings.get("LogMaxSize", _DEFAULT_LOG_MAX_SIZE_MB)),
            int(settings.get("LogMaxBackups", _DEFAULT_LOG_MAX_BACKUPS)),
            settings.get("LogFormat", ""),
            sys.stdout,
        )
        logger.log("Setup done.  Blocking!")
        try:
            while not stop.wait(_SIGNAL_POLL_SECONDS):
                pass
        except KeyboardInterrupt:
            pass
        logger.log("Starting graceful shutdown")
        logger.log(MSG, "Graceful shutdown complete")
    finally:
        signal.signal(signal.SIGTERM, previous)
        if pid_file:
            remove_pid_file(pid_file, logger)
    return 0


if __name__ == "__main__":
    sys.exit(main())