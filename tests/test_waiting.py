import socket

import pytest
from stackfixtures import (
    async_wait_for,
    get_free_tcp_port,
    wait_for,
    wait_for_logs,
    wait_for_tcp_port,
)


# ------------------------------------------------------------------------------
def test_wait_for_returns_the_condition_result():
    calls = []

    def condition():
        calls.append(1)
        return len(calls) if len(calls) >= 3 else None

    assert wait_for(condition, timeout=2, poll_interval=0.01) == 3


def test_wait_for_retries_failed_assertions():
    attempts = iter([False, False, True])

    def condition():
        assert next(attempts), "not yet"
        return True

    assert wait_for(condition, timeout=2, poll_interval=0.01) is True


def test_wait_for_chains_the_last_error():
    def condition():
        raise RuntimeError("Zookeeper is not ready yet")

    with pytest.raises(TimeoutError, match="'ready' not met") as error:
        wait_for(condition, timeout=0.1, poll_interval=0.01, name="ready")
    assert isinstance(error.value.__cause__, RuntimeError)


# ------------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_async_wait_for_accepts_coroutines():
    attempts = iter([None, "done"])

    async def condition():
        return next(attempts)

    assert await async_wait_for(condition, timeout=2, poll_interval=0.01) == "done"


@pytest.mark.asyncio
async def test_async_wait_for_times_out():
    with pytest.raises(TimeoutError):
        await async_wait_for(lambda: False, timeout=0.1, poll_interval=0.01)


# ------------------------------------------------------------------------------
def test_wait_for_tcp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("localhost", 0))
        server.listen()
        port = server.getsockname()[1]
        assert wait_for_tcp_port(port, timeout=2) is True


def test_wait_for_tcp_port_times_out_on_closed_port():
    with pytest.raises(TimeoutError, match="tcp localhost"):
        wait_for_tcp_port(get_free_tcp_port(), timeout=0.3)


# ------------------------------------------------------------------------------
class FakeContainer:
    def __init__(self, *logs):
        self.logs = iter(logs)
        self.last = ""

    def get_logs(self):
        self.last = next(self.logs, self.last)
        return self.last


def test_wait_for_logs():
    container = FakeContainer("starting\n", "starting\n[KafkaServer id=1] started\n")
    assert wait_for_logs(container, r"\[KafkaServer id=\d+\] started", timeout=2, poll_interval=0.01)


def test_wait_for_logs_times_out():
    with pytest.raises(TimeoutError, match="logs matching"):
        wait_for_logs(FakeContainer("nothing"), "ready", timeout=0.1, poll_interval=0.01)
