"""Pytest fixtures for hello-server tests."""

import pytest
import trio

from hello_overlay.face import FaceError
from hello_overlay.protocol import Name, Request


class FakeFace:
    """In-memory stand-in for Face; the test delivers requests by hand."""

    def __init__(self, register_error=None):
        self.register_error = register_error
        self.registered = None
        self.responses = []
        self.is_shut_down = False
        self._on_request = None
        self._closed = trio.Event()

    async def process_events(self, task_status=trio.TASK_STATUS_IGNORED):
        task_status.started()
        await self._closed.wait()

    def register_prefix(self, prefix, on_request, on_register_failed, on_register_success=None):
        self.registered = prefix
        self._on_request = on_request
        if self.register_error:
            on_register_failed(prefix, self.register_error)
        elif on_register_success is not None:
            on_register_success(prefix)

    def put(self, response):
        if self.is_shut_down:
            raise FaceError("Face has been shut down")
        self.responses.append(response)

    def shutdown(self):
        self.is_shut_down = True
        self._closed.set()

    def deliver(self, uri, nonce=1):
        request = Request(Name.from_uri(uri), nonce=nonce)
        self._on_request(request)
        return request


@pytest.fixture
def make_face():
    return FakeFace
