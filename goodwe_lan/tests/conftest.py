"""
Shared test fixtures for goodwe_lan tests.

All GOODWE_* env vars are cleaned before each test so ConnectionConfig only
sees what a test sets explicitly.  A loopback fake inverter is provided for
UDP transport tests.

CHANGELOG:
- 2026-03-14: Drop the TCP fake; Modbus TCP tests mock pymodbus
- 2026-02-28: Add UDP/TCP fake inverter fixtures
- 2026-02-27: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from goodwe_lan.tests.fakes import FakeUdpInverter

# All ConnectionConfig environment variable names, used for cleanup.
_ALL_GOODWE_ENV_VARS = (
    "GOODWE_HOST",
    "GOODWE_PORT",
    "GOODWE_PROTOCOL",
    "GOODWE_TIMEOUT_MS",
    "GOODWE_RETRIES",
    "GOODWE_FAMILY",
    "GOODWE_COMM_ADDR",
    "GOODWE_BACKOFF_MS",
    "GOODWE_MAX_BACKOFF_MS",
)


@pytest.fixture(autouse=True)
def _clean_goodwe_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all GOODWE_* env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_GOODWE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest_asyncio.fixture()
async def udp_inverter() -> FakeUdpInverter:
    """A silent UDP fake inverter on 127.0.0.1; set ``responder`` to answer."""
    loop = asyncio.get_running_loop()
    transport, fake = await loop.create_datagram_endpoint(
        FakeUdpInverter, local_addr=("127.0.0.1", 0)
    )
    yield fake
    transport.close()

