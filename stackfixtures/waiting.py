"""
Polling helpers used to await the eventual state of containers and of the
services they run.
"""

import asyncio
import logging
import re
import socket
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ------------------------------------------------------------------------------
def _timeout_error(name, condition, timeout, last_error):
    error = TimeoutError(
        f"condition '{name or str(condition)}' not met after {timeout} seconds"
    )
    error.__cause__ = last_error
    return error


# ------------------------------------------------------------------------------
def wait_for(
    condition: Callable[[], T], timeout=10, poll_interval=0.1, name="condition"
) -> T:
    """
    Wait for a condition to be true by polling a callable that returns a boolean.

    The condition may also raise (an AssertionError for instance) while it is not
    met yet, the last error is chained to the TimeoutError.
    """
    last_error = None
    start = time.time()
    while time.time() - start < timeout:
        try:
            if result := condition():
                return result
        except Exception as e:
            logger.debug(f"{name}: {e!r}")
            last_error = e
        time.sleep(poll_interval)
    raise _timeout_error(name, condition, timeout, last_error)


# ------------------------------------------------------------------------------
async def async_wait_for(
    condition: Callable[[], T],
    timeout=10,
    poll_interval=0.1,
    name="condition",
) -> T:
    """Wait for a condition to be true by polling a callable that returns a boolean"""
    last_error = None
    start = time.time()
    while time.time() - start < timeout:
        try:
            if asyncio.iscoroutinefunction(condition):
                result = await condition()
            else:
                result = condition()
            if result:
                return result
        except Exception as e:
            logger.debug(f"{name}: {e!r}")
            last_error = e
        await asyncio.sleep(poll_interval)
    raise _timeout_error(name, condition, timeout, last_error)


# ------------------------------------------------------------------------------
def _make_tcp_condition(host, port) -> Callable[[], bool]:
    assert host, "Host must be specified"
    assert port > 0, "Port must be greater than 0"

    def condition():
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        try:
            sock.connect((host, port))
            return True
        except ConnectionRefusedError:
            return False
        finally:
            sock.close()

    return condition


# ------------------------------------------------------------------------------
def wait_for_tcp_port(
    port: int = 0, host="localhost", timeout=10, poll_interval=0.1
) -> bool:
    """Wait for a port to be open on a host"""
    return wait_for(
        _make_tcp_condition(host, port), timeout, poll_interval, f"tcp {host}:{port}"
    )


# ------------------------------------------------------------------------------
async def async_wait_for_tcp_port(
    port: int = 0, host="localhost", timeout=10, poll_interval=0.1
) -> bool:
    """Wait for a port to be open on a host"""
    return await async_wait_for(
        _make_tcp_condition(host, port), timeout, poll_interval, f"tcp {host}:{port}"
    )


# ------------------------------------------------------------------------------
def wait_for_logs(container, pattern: str, timeout=60, poll_interval=0.5) -> bool:
    """
    Wait until the logs of a container match a regular expression.
    `container` is anything with a `get_logs()` method returning text.
    """
    regex = re.compile(pattern, re.MULTILINE)

    def condition():
        return regex.search(container.get_logs()) is not None

    return wait_for(condition, timeout, poll_interval, f"logs matching '{pattern}'")


# ------------------------------------------------------------------------------
def get_free_tcp_port(host="localhost") -> int:
    """
    Get a free TCP port
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]
