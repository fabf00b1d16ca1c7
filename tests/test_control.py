from __future__ import annotations

import threading
import time

import pytest

from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import OperationCanceled


def test_skip_is_consumed_once() -> None:
    control = RunControl()
    control.request_skip()
    control.request_skip()
    assert control.consume_skip() is True
    assert control.consume_skip() is False


def test_discard_skip_drops_pending_request() -> None:
    control = RunControl()
    control.request_skip()
    control.discard_skip()
    assert control.consume_skip() is False


def test_cancel_is_sticky() -> None:
    control = RunControl()
    control.check()
    control.cancel()
    assert control.cancelled is True
    with pytest.raises(OperationCanceled):
        control.check()
    with pytest.raises(OperationCanceled):
        control.sleep(0)


def test_sleep_wakes_on_cancel() -> None:
    control = RunControl()
    timer = threading.Timer(0.05, control.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(OperationCanceled):
            control.sleep(10_000)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 5.0
