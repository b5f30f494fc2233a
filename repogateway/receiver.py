"""Client side of the receiver worker process protocol."""

from __future__ import annotations

import enum
import json
import os
import shutil
import signal
import struct
import subprocess
from contextlib import suppress
from dataclasses import dataclass, field
from typing import IO, Any, Mapping, Union

from repogateway.logs import get_logger
from repogateway.statistics import Statistics, StatisticsError, StatisticsManager
from repogateway.tags import RepositoryTag

Payload = Union[bytes, bytearray, memoryview, IO[bytes]]


class ReceiverError(Exception):
    """A receiver command failed; ``reply`` holds the parsed reply, if any."""

    def __init__(self, message: str, reply: "ReceiverReply | None" = None) -> None:
        super().__init__(message)
        self.reply = reply


class ReceiverOp(enum.IntEnum):
    """Operation codes understood by the receiver worker."""

    QUIT = 0
    ECHO = 1
    GENERATE_TOKEN = 2
    GET_TOKEN_ID = 3
    CHECK_TOKEN = 4
    SUBMIT_PAYLOAD = 5
    COMMIT = 6
    ERROR = 7
    TEST_CRASH = 8


@dataclass
class ReceiverReply:
    """A decoded reply of the receiver worker."""

    status: str = ""
    reason: str = ""
    final_revision: int = 0
    statistics: Statistics = field(default_factory=Statistics)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReceiverReply":
        """Build a reply from its decoded JSON form."""
        status = data.get("status") or ""
        reason = data.get("reason") or ""
        if not isinstance(status, str) or not isinstance(reason, str):
            raise TypeError("status and reason must be strings")
        revision = data.get("final_revision") or 0
        if isinstance(revision, bool) or not isinstance(revision, int) or revision < 0:
            raise TypeError("final_revision must be a non-negative integer")
        statistics = data.get("statistics") or {}
        if not isinstance(statistics, Mapping):
            raise TypeError("statistics must be an object")
        return cls(status, reason, revision, Statistics.from_dict(statistics))


def parse_receiver_reply(reply: bytes) -> ReceiverReply:
    """Decode a reply; raise ReceiverError if it is malformed or not ``ok``."""
    try:
        data = json.loads(reply)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise TypeError("reply is not an object")
        parsed = ReceiverReply.from_dict(data)
    except (ValueError, TypeError) as exc:
        text = bytes(reply).decode("utf-8", errors="replace")
        raise ReceiverError(f"could not decode receiver reply '{text}': {exc}") from exc
    if parsed.status != "ok":
        raise ReceiverError(parsed.reason, reply=parsed)
    return parsed


def _encode(request: Mapping[str, Any]) -> bytes:
    return json.dumps(request, separators=(",", ":")).encode("utf-8")


class CvmfsReceiver:
    """A receiver worker process, driven over a pair of pipes.

    Usable as a context manager; leaving the block sends the quit command.
    """

    def __init__(
        self,
        exec_path: str,
        stats_manager: StatisticsManager,
        *args: str,
        context: Any = None,
    ) -> None:
        if not os.path.exists(exec_path):
            raise ReceiverError(f"worker process executable not found: {exec_path}")
        self.stats_manager = stats_manager
        self.context = context
        self._log = get_logger("receiver", context)
        self._closed = False

        in_read, in_write = os.pipe()
        try:
            out_read, out_write = os.pipe()
        except OSError as exc:
            os.close(in_read)
            os.close(in_write)
            raise ReceiverError(f"could not create worker output pipe: {exc}") from exc

        command = [exec_path, "-i", str(in_read), "-o", str(out_write), *args]
        try:
            self._process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=(in_read, out_write),
            )
        except OSError as exc:
            for fd in (in_write, out_read):
                os.close(fd)
            raise ReceiverError(f"could not start worker process: {exc}") from exc
        finally:
            # The child holds its own copies; keeping ours open would hide a crash.
            os.close(in_read)
            os.close(out_write)

        self._cmd_in = open(in_write, "wb")
        self._cmd_out = open(out_read, "rb")
        self._log.debug("worker process ready", extra={"command": "start"})

    def __enter__(self) -> "CvmfsReceiver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._closed:
            return
        if exc_type is None:
            self.quit()
        else:
            with suppress(ReceiverError):
                self.quit()

    @property
    def exit_code(self) -> int | None:
        """Exit status of the worker, or None while it is running."""
        return self._process.poll()

    def quit(self) -> None:
        """Ask the worker to stop and wait for it to exit."""
        need_wait = True
        try:
            try:
                self._call(ReceiverOp.QUIT)
            except ReceiverError as exc:
                raise ReceiverError(f"worker 'quit' call failed: {exc}") from exc

            for name, stream in (("stderr", self._process.stderr), ("stdout", self._process.stdout)):
                try:
                    output = stream.read()
                except (OSError, ValueError) as exc:
                    raise ReceiverError(f"could not retrieve worker {name}: {exc}") from exc
                self._log.debug(output.decode("utf-8", errors="replace"), extra={"pipe": name})

            returncode = self._process.wait()
            need_wait = False
            if returncode != 0:
                raise ReceiverError(
                    f"waiting for worker process failed: exit status {returncode}"
                )
            self._log.debug("worker process has stopped", extra={"command": "quit"})
        finally:
            self._close_pipes()
            if need_wait:
                self._process.wait()
            self._closed = True

    def echo(self) -> str:
        """Send a ping to the worker and return its ``PID: ...`` reply."""
        try:
            raw = self._call(ReceiverOp.ECHO, b"Ping")
        except ReceiverError as exc:
            raise ReceiverError(f"worker 'echo' call failed: {exc}") from exc
        reply = raw.decode("utf-8", errors="replace")
        if not reply.startswith("PID: "):
            raise ReceiverError(f"invalid 'echo' reply received: {reply}")
        self._log.debug(f"reply: {reply}", extra={"command": "echo"})
        return reply

    def submit_payload(
        self, lease_path: str, payload: Payload, digest: str, header_size: int
    ) -> None:
        """Stream a payload to the worker and merge the returned statistics."""
        request = _encode({"path": lease_path, "digest": digest, "header_size": header_size})
        try:
            raw = self._call(ReceiverOp.SUBMIT_PAYLOAD, request, payload)
        except ReceiverError as exc:
            raise ReceiverError(f"worker 'payload submission' call failed: {exc}") from exc

        try:
            parsed = parse_receiver_reply(raw)
        except ReceiverError as exc:
            self._log.debug(f"result: {exc}", extra={"command": "submit payload"})
            raise
        self._log.debug("result: ok", extra={"command": "submit payload"})
        try:
            self.stats_manager.merge_into_lease_statistics(lease_path, parsed.statistics)
        except StatisticsError as exc:
            self._log.debug(str(exc), extra={"command": "submit payload"})

    def commit(
        self, lease_path: str, old_root_hash: str, new_root_hash: str, tag: RepositoryTag
    ) -> int:
        """Commit the lease's changes and return the final revision number."""
        try:
            statistics = self.stats_manager.pop_lease(lease_path)
        except StatisticsError as exc:
            raise ReceiverError(f"could not obtain statistics counters: {exc}") from exc
        request = _encode(
            {
                "lease_path": lease_path,
                "old_root_hash": old_root_hash,
                "new_root_hash": new_root_hash,
                "tag_name": tag.name,
                "tag_channel": tag.channel,
                "tag_description": tag.description,
                "statistics": statistics.to_dict(),
            }
        )
        try:
            raw = self._call(ReceiverOp.COMMIT, request)
        except ReceiverError as exc:
            raise ReceiverError(f"worker 'commit' call failed: {exc}") from exc

        try:
            parsed = parse_receiver_reply(raw)
        except ReceiverError as exc:
            self._log.debug(f"result: {exc}", extra={"command": "commit"})
            raise
        self._log.debug("result: ok", extra={"command": "commit"})
        return parsed.final_revision

    def interrupt(self) -> None:
        """Send SIGINT to the worker process."""
        self._process.send_signal(signal.SIGINT)

    def test_crash(self) -> None:
        """Ask the worker to crash; used to exercise error handling."""
        raw = self._call(ReceiverOp.TEST_CRASH)
        parse_receiver_reply(raw)

    def _call(self, op: ReceiverOp, message: bytes = b"", payload: Payload | None = None) -> bytes:
        self._request(op, message, payload)
        return self._reply()

    def _request(self, op: ReceiverOp, message: bytes, payload: Payload | None) -> None:
        header = struct.pack("<II", int(op), len(message))
        try:
            self._cmd_in.write(header + message)
            self._cmd_in.flush()
        except (OSError, ValueError) as exc:
            raise ReceiverError(f"could not write request: {exc}") from exc
        if payload is None:
            return
        try:
            if isinstance(payload, (bytes, bytearray, memoryview)):
                self._cmd_in.write(payload)
            else:
                shutil.copyfileobj(payload, self._cmd_in)
            self._cmd_in.flush()
        except (OSError, ValueError) as exc:
            with suppress(OSError):
                self.interrupt()
            raise ReceiverError(f"could not write request payload: {exc}") from exc

    def _reply(self) -> bytes:
        (size,) = struct.unpack("<i", self._read_exact(4, "could not read reply size"))
        if size < 0:
            raise ReceiverError(f"invalid reply size: {size}")
        return self._read_exact(size, "could not read reply body")

    def _read_exact(self, size: int, what: str) -> bytes:
        try:
            data = self._cmd_out.read(size)
        except (OSError, ValueError) as exc:
            raise ReceiverError(f"{what}: {exc}") from exc
        if data is None or len(data) < size:
            raise ReceiverError(f"possible that the receiver crashed: {what}")
        return data

    def _close_pipes(self) -> None:
        for stream in (self._cmd_in, self._cmd_out, self._process.stdout, self._process.stderr):
            if stream is not None:
                with suppress(OSError, ValueError):
                    stream.close()