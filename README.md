# gatewaycore

Building blocks for a metrics gateway that receives datapoints, events and
trace spans and sends them on in batches. The package has no dependencies
outside the standard library.

## Modules

### `gatewaycore.buffered`

`BufferedForwarder` queues datapoints, events and spans and drains them in
batches to a downstream sink. It does this on background threads. For each
draining thread there is one thread per kind of item.

- `add_datapoints(points, cancel=None)`, `add_events(events, cancel=None)` and
  `add_spans(spans, cancel=None)` queue a batch. They raise `BufferFullError`
  when the configured total for that kind is reached. They raise
  `concurrent.futures.CancelledError` when the forwarder is stopped or the
  optional `cancel` event is set while they wait for room.
- The sink is called as `send_to.add_datapoints(items, stop_event)` and the
  same way for `add_events` and `add_spans`. Each batch holds queued batches
  merged together, up to `max_drain_size` items.
- `datapoints()` returns six `Gauge` readings of the queue sizes.
- `pipeline()` returns the number of queued batches plus the number of items
  being sent.
- `close()` stops and joins the threads, then calls the `close_sender` hook.
- `startup_finished()` runs the `after_startup` hook.
- `debug_endpoints()` returns the mapping from the `debug_endpoints` hook.

`BufferedConfig` holds `buffer_size`, `max_total_datapoints`,
`max_total_events`, `max_total_spans`, `max_drain_size`,
`num_draining_threads`, `checker` and `name`. Fields left as `None` take these
defaults:

| Field | Default |
|---|---|
| buffer size and each maximum total | 1,000,000 |
| `max_drain_size` | 30,000 |
| `num_draining_threads` | 10 |

### `gatewaycore.loader`

`Loader` maps a configuration's `type` attribute to a factory.

- Register factories with `register_forwarder(type_name, factory)` and
  `register_listener(type_name, factory)`.
- Build components with `forwarder(conf)` and `listener(sink, conf)`.
- A missing or unknown type raises `LoaderError`.
- Before a listener is built, its sink is passed through the listen wrappers.
  By default the only wrapper is `DimensionListenerWrapper`. When
  `conf.dimensions` is set, it wraps the sink in a `DimensionsAddingSink`, which
  merges those dimensions into every datapoint's and event's `dimensions` and
  every span's `tags`.

### `gatewaycore.dimsort`

`Ordering(dimension_order)` sorts dimension names. Names from the preferred
list come first, in list order, and the rest follow alphabetically.

```python
from gatewaycore.dimsort import Ordering

order = Ordering(["name", "ignored", "value"])
order.sort({"name": "jack", "a": "test", "value": "big"})
# ['name', 'value', 'a']
```

### `gatewaycore.internal_metrics`

`Collector(source, encode=None)` is a WSGI application. It calls `source()` and
serves the result as a JSON array.

- Dataclasses, enums and plain objects are encoded through their fields.
- If encoding fails, the response is a `500` with the error text.
- `render()` returns the status code, headers and body without going through
  WSGI.

### `gatewaycore.logging`

`KVLogger` writes one logfmt or JSON line per `log(*args)` call. The arguments
are alternating keys and values, and an odd trailing argument becomes `msg`.
`with_context(*pairs)` returns a logger that prefixes every line with those
pairs. Callable values in the context are evaluated per line.

`make_logger(log_dir, max_size_mb, max_backups, log_format, stdout)` builds
the gateway logger:

- A `log_dir` of `-` writes to `stdout`.
- Any other `log_dir` writes to a size-rotated `gateway.log` in that directory.
- A `log_format` of `json` selects JSON lines; anything else selects logfmt.

`Key` and constants such as `FILENAME`, `TOTAL_PIPELINE` and `ERR` name common
fields.

### `gatewaycore.flags`

`StringFlag` is a string option that records whether it was set at all.

### `gatewaycore.gateway`

These are helpers for start-up and shutdown:

- `parse_flags` and `GatewayFlags`
- `component_name`
- `check_unique_names` (raises `DuplicateNameError`)
- `group_dimensions`
- `first_error`
- `close_all`, which closes items concurrently
- `total_pipeline`
- `wait_for_drain`, which polls a pipeline count until it reaches zero or a
  timeout passes
- `write_pid_file` and `remove_pid_file`
- the `main` entry point

## Installing

```
pip install .
pip install .[test]
pytest
```

## Running

```
gatewaycore --configfile sf/gateway.conf
gatewaycore --version
```

The configuration file is a JSON object, and `sf/gateway.conf` is the default
path. `main` uses these keys:

| Key | Effect | Default |
|---|---|---|
| `PidFilename` | The process id is written there and removed on exit. | none |
| `LogDir` | Directory for the log file, or `-` for stdout. | `-` |
| `LogMaxSize` | Maximum log file size, in megabytes. | 100 |
| `LogMaxBackups` | Number of rotated log files kept. | 10 |
| `LogFormat` | `json` for JSON lines; anything else for logfmt. | logfmt |

`--cluster-op VALUE` sets `ClusterOperation` in the loaded settings.

After loading, the command logs that setup is done and waits until SIGTERM or
Ctrl-C. It then logs the shutdown and exits. It returns 1 if the configuration
file cannot be read or is not a JSON object.

## What the package does not do

- It contains no protocol implementations. There are no network listeners or
  forwarders for any wire format, and `Loader` starts with no registered types.
  You supply the factories.
- The `gatewaycore` command does not build forwarders or listeners from its
  configuration, and it serves no HTTP endpoints.
- It does not run or join a cluster. `ClusterOperation` is stored but nothing
  acts on it.
- It only loads settings, manages the pid file and logging, and waits for a
  shutdown signal.