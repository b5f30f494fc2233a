import io
import shlex
import sys

import pytest

from repogateway.receiver import CvmfsReceiver, ReceiverError, parse_receiver_reply
from repogateway.statistics import StatisticsError, StatisticsManager
from repogateway.tags import RepositoryTag

FAKE_SOURCE = r'''
import json
import os
import struct
import sys

args = sys.argv[1:]
fd_in = int(args[args.index("-i") + 1])
fd_out = int(args[args.index("-o") + 1])
bad_echo = "--bad-echo" in args
src = os.fdopen(fd_in, "rb")
dst = os.fdopen(fd_out, "wb")


def send(data):
    dst.write(struct.pack("<i", len(data)) + data)
    dst.flush()


while True:
    header = src.read(8)
    if len(header) < 8:
        break
    op, size = struct.unpack("<II", header)
    msg = src.read(size)
    if op == 0:
        send(b"")
        break
    elif op == 1:
        send(b"nope" if bad_echo else b"PID: %d" % os.getpid())
    elif op == 5:
        req = json.loads(msg)
        payload = src.read(req["header_size"])
        if payload == b"fail":
            send(json.dumps({"status": "error", "reason": "bad payload"}).encode())
        else:
            stats = {"publish": {"n_chunks_added": len(payload)}}
            send(json.dumps({"status": "ok", "statistics": stats}).encode())
    elif op == 6:
        req = json.loads(msg)
        if req["old_root_hash"] == "bad":
            send(json.dumps({"status": "error", "reason": req["tag_name"]}).encode())
        else:
            revision = req["statistics"]["publish"]["n_chunks_added"]
            send(json.dumps({"status": "ok", "final_revision": revision}).encode())
    elif op == 8:
        os._exit(1)
'''

LEASE = "test.repo.org/sub/path"


@pytest.fixture
def fake_receiver(tmp_path):
    script = tmp_path / "fake_receiver.py"
    script.write_text(FAKE_SOURCE)
    launcher = tmp_path / "fake_receiver"
    launcher.write_text(
        f"#!/bin/sh\nexec {shlex.quote(sys.executable)} {shlex.quote(str(script))} \"$@\"\n"
    )
    launcher.chmod(0o755)
    return str(launcher)


@pytest.fixture
def receiver(fake_receiver):
    instance = CvmfsReceiver(fake_receiver, StatisticsManager())
    yield instance
    if instance.exit_code is None:
        try:
            instance.quit()
        except ReceiverError:
            pass


def test_parse_reply_ok():
    reply = parse_receiver_reply(b'{"status":"ok","final_revision":7}')
    assert reply.status == "ok"
    assert reply.final_revision == 7


def test_parse_reply_error_status_carries_reason():
    with pytest.raises(ReceiverError, match="lease expired") as info:
        parse_receiver_reply(b'{"status":"error","reason":"lease expired"}')
    assert info.value.reply.status == "error"


def test_parse_reply_invalid_json():
    with pytest.raises(ReceiverError, match="could not decode receiver reply 'garbage'"):
        parse_receiver_reply(b"garbage")


def test_parse_reply_reads_statistics():
    reply = parse_receiver_reply(
        b'{"status":"ok","statistics":{"publish":{"n_catalogs_added":3}}}'
    )
    assert reply.statistics.publish.catalogs_added == 3


def test_missing_executable(tmp_path):
    with pytest.raises(ReceiverError, match="executable not found"):
        CvmfsReceiver(str(tmp_path / "nothing"), StatisticsManager())


def test_receiver_cycle(fake_receiver):
    rec = CvmfsReceiver(fake_receiver, StatisticsManager())
    assert rec.echo().startswith("PID: ")
    rec.quit()
    assert rec.exit_code == 0


def test_context_manager_quits(fake_receiver):
    with CvmfsReceiver(fake_receiver, StatisticsManager()) as rec:
        assert rec.echo().startswith("PID: ")
    assert rec.exit_code == 0


def test_invalid_echo_reply(fake_receiver):
    with CvmfsReceiver(fake_receiver, StatisticsManager(), "--bad-echo") as rec:
        with pytest.raises(ReceiverError, match="invalid 'echo' reply received: nope"):
            rec.echo()


def test_submit_payload_merges_statistics(fake_receiver):
    stats = StatisticsManager()
    stats.create_lease(LEASE)
    payload = b"abcde"
    with CvmfsReceiver(fake_receiver, stats) as rec:
        rec.submit_payload(LEASE, payload, "digest", len(payload))
    assert stats.pop_lease(LEASE).publish.chunks_added == len(payload)


def test_submit_payload_from_stream(fake_receiver):
    stats = StatisticsManager()
    stats.create_lease(LEASE)
    payload = b"0123456789"
    with CvmfsReceiver(fake_receiver, stats) as rec:
        rec.submit_payload(LEASE, io.BytesIO(payload), "digest", len(payload))
    assert stats.pop_lease(LEASE).publish.chunks_added == len(payload)


def test_submit_payload_error_leaves_statistics(fake_receiver):
    stats = StatisticsManager()
    stats.create_lease(LEASE)
    with CvmfsReceiver(fake_receiver, stats) as rec:
        with pytest.raises(ReceiverError, match="bad payload"):
            rec.submit_payload(LEASE, b"fail", "digest", 4)
    assert stats.pop_lease(LEASE).publish.chunks_added == 0


def test_commit_returns_revision_and_consumes_statistics(fake_receiver):
    stats = StatisticsManager()
    stats.create_lease(LEASE)
    payload = b"abc"
    with CvmfsReceiver(fake_receiver, stats) as rec:
        rec.submit_payload(LEASE, payload, "digest", len(payload))
        revision = rec.commit(LEASE, "old", "new", RepositoryTag(name="v1"))
    assert revision == len(payload)
    with pytest.raises(StatisticsError):
        stats.pop_lease(LEASE)


def test_commit_without_statistics_entry(receiver):
    with pytest.raises(ReceiverError, match="could not obtain statistics counters"):
        receiver.commit(LEASE, "old", "new", RepositoryTag())


def test_commit_error_reply(fake_receiver):
    stats = StatisticsManager()
    stats.create_lease(LEASE)
    with CvmfsReceiver(fake_receiver, stats) as rec:
        with pytest.raises(ReceiverError, match="broken"):
            rec.commit(LEASE, "bad", "new", RepositoryTag(name="broken"))


def test_on_crash_we_return_error(receiver):
    assert receiver.echo().startswith("PID: ")
    with pytest.raises(ReceiverError, match="possible that the receiver crashed"):
        receiver.test_crash()


def test_after_crash_commands_return_errors(receiver):
    assert receiver.echo().startswith("PID: ")
    with pytest.raises(ReceiverError):
        receiver.test_crash()
    with pytest.raises(ReceiverError, match="worker 'echo' call failed"):
        receiver.echo()
    with pytest.raises(ReceiverError, match="worker 'quit' call failed"):
        receiver.quit()


def test_after_crash_quit_does_not_hang(receiver):
    with pytest.raises(ReceiverError):
        receiver.test_crash()
    with pytest.raises(ReceiverError):
        receiver.quit()
    assert receiver.exit_code not in (None, 0)


def test_interrupt_stops_worker(receiver):
    receiver.interrupt()
    with pytest.raises(ReceiverError):
        receiver.echo()