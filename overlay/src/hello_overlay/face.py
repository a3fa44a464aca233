import logging
import math
from dataclasses import dataclass, field
from functools import partial

import trio

from hello_overlay.config import FORWARDER_SOCKET_PATH
from hello_overlay.framing import recv_msg, send_msg
from hello_overlay.protocol import (
    Nack,
    Name,
    ProtocolError,
    Request,
    Response,
    name_from_wire,
    packet_from_wire,
)

logger = logging.getLogger("overlay.face")


class FaceError(ConnectionError):
    """The face is not connected, or its forwarder connection was lost."""


@dataclass(eq=False)
class _PendingRequest:
    request: Request
    on_response: object
    on_nack: object
    on_timeout: object
    settled: trio.Event = field(default_factory=trio.Event)


@dataclass
class _PrefixFilter:
    prefix: Name
    on_request: object
    on_register_failed: object
    on_register_success: object = None


class Face:
    """
    Connection of one role to the local forwarder.

    Callbacks are plain functions and run on the trio loop, one at a time, in
    the order packets arrive. `process_events` must be running (started through
    `nursery.start`) before requests, responses or registrations are issued.
    """

    def __init__(self, socket_path=None, connector=None):
        self.socket_path = socket_path or FORWARDER_SOCKET_PATH
        self._connector = connector or partial(trio.open_unix_socket, self.socket_path)
        self._stream = None
        self._nursery = None
        self._send_chan = None
        self._pending: dict[Name, list[_PendingRequest]] = {}
        self._filters: dict[Name, _PrefixFilter] = {}

    @property
    def is_running(self) -> bool:
        return self._nursery is not None and self._send_chan is not None

    async def process_events(self, task_status=trio.TASK_STATUS_IGNORED):
        """Connect, then pump packets until `shutdown()` is called."""
        try:
            self._stream = await self._connector()
        except OSError as e:
            raise FaceError(f"Cannot connect to forwarder at {self.socket_path}: {e}") from e

        send_chan, recv_chan = trio.open_memory_channel(math.inf)
        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                self._send_chan = send_chan
                nursery.start_soon(self._receive_loop)
                task_status.started()

                # Returns once shutdown() closes the send side and the queue is flushed
                await self._send_loop(recv_chan)
                nursery.cancel_scope.cancel()
        finally:
            self._nursery = None
            self._send_chan = None
            self._pending.clear()
            await self._stream.aclose()

    def express_request(self, request: Request, on_response, on_nack, on_timeout):
        self._require_running()
        entry = _PendingRequest(request, on_response, on_nack, on_timeout)
        self._pending.setdefault(request.name, []).append(entry)
        self._enqueue(request.to_wire())
        self._nursery.start_soon(self._expire, entry)

    def register_prefix(self, prefix: Name, on_request, on_register_failed, on_register_success=None):
        self._require_running()
        self._filters[prefix] = _PrefixFilter(
            prefix, on_request, on_register_failed, on_register_success
        )
        self._enqueue({"type": "register", "prefix": list(prefix.components)})

    def put(self, response: Response):
        self._require_running()
        self._enqueue(response.to_wire())

    def shutdown(self):
        """Flush queued packets and close the connection."""
        if self._send_chan is not None:
            self._send_chan.close()
            self._send_chan = None

    def _require_running(self):
        if not self.is_running:
            raise FaceError("Face is not running")

    def _enqueue(self, wire):
        try:
            self._send_chan.send_nowait(wire)
        except trio.ClosedResourceError as e:
            raise FaceError("Face has been shut down") from e

    async def _send_loop(self, recv_chan):
        try:
            async for wire in recv_chan:
                await send_msg(self._stream, wire)
        except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
            raise FaceError(f"Lost connection to forwarder: {e}") from e

    async def _receive_loop(self):
        while True:
            try:
                wire = await recv_msg(self._stream)
            except (trio.BrokenResourceError, trio.ClosedResourceError) as e:
                raise FaceError(f"Lost connection to forwarder: {e}") from e
            if wire is None:
                raise FaceError("Connection closed by forwarder")

            if isinstance(wire, dict) and wire.get("type") == "register_result":
                self._on_register_result(wire)
                continue

            try:
                packet = packet_from_wire(wire)
            except ProtocolError as e:
                logger.warning(f"Dropping malformed packet: {e}")
                continue

            if isinstance(packet, Request):
                self._on_request(packet)
            elif isinstance(packet, Response):
                self._on_response(packet)
            elif isinstance(packet, Nack):
                self._on_nack(packet)

    async def _expire(self, entry: _PendingRequest):
        with trio.move_on_after(entry.request.lifetime) as scope:
            await entry.settled.wait()
        if scope.cancelled_caught and self._detach(entry):
            entry.on_timeout(entry.request)

    def _detach(self, entry: _PendingRequest) -> bool:
        entries = self._pending.get(entry.request.name, [])
        if entry not in entries:
            return False
        entries.remove(entry)
        if not entries:
            del self._pending[entry.request.name]
        entry.settled.set()
        return True

    def _on_response(self, response: Response):
        entries = list(self._pending.get(response.name, []))
        if not entries:
            logger.debug(f"Dropping unsolicited response {response.name}")
            return
        for entry in entries:
            self._detach(entry)
            entry.on_response(entry.request, response)

    def _on_nack(self, nack: Nack):
        for entry in list(self._pending.get(nack.name, [])):
            if entry.request.nonce == nack.nonce:
                self._detach(entry)
                entry.on_nack(entry.request, nack)
                return
        logger.debug(f"Dropping nack for unknown request {nack.name}")

    def _on_request(self, request: Request):
        match = None
        for prefix, flt in self._filters.items():
            if prefix.is_prefix_of(request.name) and (
                match is None or len(prefix) > len(match.prefix)
            ):
                match = flt
        if match is None:
            logger.debug(f"No filter for request {request.name}")
            return
        match.on_request(request)

    def _on_register_result(self, wire):
        try:
            prefix = name_from_wire(wire.get("prefix"))
        except ProtocolError as e:
            logger.warning(f"Dropping malformed registration result: {e}")
            return
        flt = self._filters.get(prefix)
        if flt is None:
            return
        if wire.get("ok"):
            if flt.on_register_success is not None:
                flt.on_register_success(prefix)
        else:
            del self._filters[prefix]
            flt.on_register_failed(prefix, wire.get("reason", "unknown"))
