"""Pytest fixtures for hello-client tests."""

import random

import pytest
import trio

from hello_overlay.face import FaceError
from hello_overlay.protocol import Nack, NackReason, Response


class FakeFace:
    """
    In-memory stand-in for Face.

    `outcome` decides what happens to every expressed request: "response",
    "nack" and "timeout" settle it immediately, "silent" never settles it.
    """

    def __init__(self, outcome="response", content=b"Hello World!!!"):
        self.outcome = outcome
        self.content = content
        self.expressed = []
        self.is_shut_down = False
        self.fail_on_connect = None
        self._lost = trio.Event()

    async def process_events(self, task_status=trio.TASK_STATUS_IGNORED):
        if self.fail_on_connect is not None:
            raise self.fail_on_connect
        task_status.started()
        await self._lost.wait()
        raise FaceError("Connection closed by forwarder")

    def lose_connection(self):
        self._lost.set()

    def express_request(self, request, on_response, on_nack, on_timeout):
        if self.is_shut_down:
            raise FaceError("Face has been shut down")
        self.expressed.append((trio.current_time(), request))
        if self.outcome == "response":
            on_response(request, Response(request.name, content=self.content))
        elif self.outcome == "nack":
            on_nack(request, Nack(request.name, request.nonce, NackReason.NO_ROUTE))
        elif self.outcome == "timeout":
            on_timeout(request)

    def shutdown(self):
        self.is_shut_down = True


@pytest.fixture
def fake_face():
    return FakeFace()


@pytest.fixture
def seeded_rng():
    return random.Random(1234)


@pytest.fixture
def make_face():
    return FakeFace
