"""Shared fixtures for localserver tests."""

import time

import httpx
import pytest

pytest_plugins = ["localserver.testing"]


class RecordingClient:
    """LoadingClient recording every event with the time it arrived."""

    def __init__(self, on_header=None):
        self.events = []
        self.started = time.monotonic()
        self._on_header = on_header

    def _record(self, name, value=None):
        self.events.append((name, value, time.monotonic() - self.started))

    def on_header_received(self, head):
        self._record('header', head)
        if self._on_header is not None:
            self._on_header()

    def on_body_chunk_received(self, data):
        self._record('body', data)

    def on_completed(self):
        self._record('completed')

    def on_failed(self, error):
        self._record('failed', error)

    @property
    def names(self):
        return [name for name, _, _ in self.events]

    def event(self, name):
        for event_name, value, elapsed in self.events:
            if event_name == name:
                return value, elapsed
        raise AssertionError(f"No {name} event in {self.names}")


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
def client_factory():
    """Factory for RecordingClient instances with an optional header callback."""
    return RecordingClient


@pytest.fixture
def make_request():
    """Factory for httpx requests."""
    def _make(url='https://int.example.com/persons/123', method='GET'):
        return httpx.Request(method, url)
    return _make
