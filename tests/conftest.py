"""
Shared test fixtures for hexflash.

Provides a scripted in-memory serial transport so the transmission
session and the CLI can be tested without hardware.
"""

import pytest


class FakeTransport:
    """
    In-memory stand-in for serial.Serial.

    Responses are returned one per read() call; once the script runs out,
    `default` is returned. Every call is appended to `events` in order.
    """

    def __init__(self, responses=None, default=b"."):
        self.responses = list(responses or [])
        self.default = default
        self.events = []
        self.written = []
        self.is_open = True

    def write(self, data):
        self.events.append(("write", bytes(data)))
        self.written.append(bytes(data))
        return len(data)

    def flush(self):
        self.events.append(("flush",))

    def read(self, size=1):
        self.events.append(("read",))
        if self.responses:
            return self.responses.pop(0)
        return self.default

    def reset_input_buffer(self):
        self.events.append(("reset_input",))

    def reset_output_buffer(self):
        pass

    def close(self):
        self.is_open = False


@pytest.fixture
def make_transport():
    """Fixture: factory for scripted fake transports."""
    return FakeTransport


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep HEXFLASH_* variables from the host out of the tests."""
    for name in (
        "HEXFLASH_PORT",
        "HEXFLASH_BAUD",
        "HEXFLASH_TIMEOUT",
        "HEXFLASH_RETRIES",
        "HEXFLASH_ACK",
    ):
        monkeypatch.delenv(name, raising=False)
