# repogateway

`repogateway` holds the building blocks of a gateway for publishing into
software repositories. Clients of such a gateway take a *lease* on a path
inside a repository, upload payloads while they hold it, and finally commit
it. This package provides the parts underneath that workflow: lease path
handling, HMAC request signing, configuration, structured logging, per-lease
statistics, and the client side of the external receiver worker processes
that unpack payloads and commit changes.

It needs Python 3.10 or later and has no dependencies outside the standard
library. The `test` extra pulls in pytest.

## Lease paths

```python
from repogateway.pathutil import check_path_overlap, split_lease_path

check_path_overlap("abc/def", "abc")         # True  – one contains the other
check_path_overlap("abcdef", "abc")          # False – components are compared whole
split_lease_path("test.repo.org/sub/path")   # ("test.repo.org", "/sub/path")
split_lease_path("notfqdn/sub/path")         # raises ValueError
```

A single leading slash is ignored by `check_path_overlap`, and an empty path
overlaps everything. `split_lease_path` requires the repository name to be a
name with at least two dots and rejects a leading slash.

## Signing

```python
from repogateway.signing import compute_hmac, check_hmac

digest = compute_hmac(b"message", "secret")   # hex HMAC-SHA1, as bytes
check_hmac(b"message", digest, "secret")      # True, compared in constant time
```

## Protocol versions

`repogateway.version` defines `API_PROTOCOL_VERSION` (3),
`MIN_API_PROTOCOL_VERSION` (2) and `API_ROOT` (`/api/v1`).
`max_api_version(n)` returns the smaller of `n` and the latest version.

## Configuration

`repogateway.config.read_config(argv=None)` returns a `Config` dataclass.
It reads the JSON file named by `--user_config_file` (default
`/etc/cvmfs/gateway/user.json`; an unreadable file is ignored) and the
options `--port`, `--max_lease_time` (seconds, stored as a `timedelta`),
`--lease_db`, `--etcd_endpoints`, `--log_level`, `--log_timestamps`,
`--access_config_file`, `--num_receivers`, `--receiver_path`, `--work_dir`
and `--mock_receiver`. Options given on the command line win over the file,
which wins over the defaults. The older file keys `fe_tcp_port`,
`receiver_config.size` and `receiver_worker_config.executable_path` are
honoured too. Malformed values raise `ConfigError`.

## Logging and request context

`repogateway.logs` writes one JSON object per line. `init_logging(sink)` sets
the output stream (standard error by default) at level info,
`configure_logging(config)` applies `log_level` and `log_timestamps`, and
`get_logger(component, context=None)` returns a logger that tags records with
the component and, given a `RequestContext`, the request id and the
milliseconds since the request arrived. `LogLevel` lists the levels used.

`repogateway.context.RequestContext.new()` creates a context with a random
UUID; `elapsed()` gives the seconds since. `setup_close_handler(actions)`
runs the actions on the first SIGINT or SIGTERM and then sets the returned
`threading.Event`.

## Statistics

`repogateway.statistics.StatisticsManager` keeps a `Statistics` entry
(publication counters and a start time) for each active lease path:
`create_lease`, `merge_into_lease_statistics` and `pop_lease`, raising
`StatisticsError` for missing or duplicate entries. `upload_stats_plots(repo)`
runs the plot upload script.

## Receiver workers

`repogateway.receiver.CvmfsReceiver(exec_path, stats_manager, *args,
context=None)` starts a worker executable, passing it `-i <fd> -o <fd>` for a
pair of pipes. Requests are framed as a little-endian operation code
(`ReceiverOp`) and length followed by the message; replies as a length and a
JSON body. The methods `echo()`, `submit_payload(...)`, `commit(...)`
(returns the final revision), `interrupt()`, `test_crash()` and `quit()`
raise `ReceiverError` on failure, including when the worker has crashed.
Before committing a lease, a statistics entry must exist for it.

`repogateway.pool.WorkerPool(worker_exec, num_workers, stats_manager)` runs
tasks on a fixed number of threads, starting a fresh receiver for each task:

```python
from repogateway.pool import WorkerPool
from repogateway.statistics import StatisticsManager
from repogateway.tags import RepositoryTag

stats = StatisticsManager()
with WorkerPool("/usr/bin/cvmfs_receiver", 2, stats) as pool:
    stats.create_lease("test.repo.org/sub/path")
    pool.submit_payload(None, "test.repo.org/sub/path", payload_bytes, digest, header_size)
    revision = pool.commit_lease(None, "test.repo.org/sub/path", old_hash, new_hash,
                                 RepositoryTag(name="release"))
```

## What this package does not do

It has no HTTP front end, no request routing or authorization middleware, no
lease database, no key file loader and no command to start a gateway. It
supplies the pieces such a service is built from, not the service itself.