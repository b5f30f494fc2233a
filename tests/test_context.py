import signal
from datetime import datetime, timezone

import pytest

from repogateway.context import RequestContext, setup_close_handler


@pytest.fixture
def restore_signals():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


def test_new_contexts_have_distinct_ids():
    first = RequestContext.new()
    second = RequestContext.new()
    assert first.request_id != second.request_id
    assert first.request_id.version == 4


def test_received_at_is_in_the_past():
    ctx = RequestContext.new()
    assert ctx.received_at <= datetime.now(timezone.utc)


def test_elapsed_is_monotonic():
    ctx = RequestContext.new()
    first = ctx.elapsed()
    second = ctx.elapsed()
    assert 0 <= first <= second


def test_close_handler_runs_actions_in_order(restore_signals):
    calls = []
    done = setup_close_handler([lambda: calls.append("a"), lambda: calls.append("b")])
    assert not done.is_set()
    signal.raise_signal(signal.SIGTERM)
    assert done.is_set()
    assert calls == ["a", "b"]


def test_close_handler_runs_only_once(restore_signals):
    calls = []
    done = setup_close_handler([lambda: calls.append(1)])
    signal.raise_signal(signal.SIGINT)
    signal.raise_signal(signal.SIGTERM)
    assert done.is_set()
    assert calls == [1]