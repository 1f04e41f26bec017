"""Constants and polling helpers shared by the test modules."""

import asyncio

import pytest

CONDITION_ID = "0xc0ffee"
YES_TOKEN = "yes-token"
NO_TOKEN = "no-token"


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(interval)
