import argparse
import itertools
import logging
import math
import os
from dataclasses import dataclass

import trio

from hello_overlay.config import FORWARDER_SOCKET_PATH
from hello_overlay.framing import recv_msg, send_msg
from hello_overlay.protocol import (
    Nack,
    NackReason,
    Name,
    ProtocolError,
    Request,
    Response,
    name_from_wire,
    packet_from_wire,
)

logger = logging.getLogger("overlay.forwarder")


@dataclass(eq=False)
class FaceLink:
    """Forwarder side of one connected face."""

    face_id: int
    send_chan: trio.MemorySendChannel

    def send(self, wire):
        try:
            self.send_chan.send_nowait(wire)
        except (trio.ClosedResourceError, trio.BrokenResourceError):
            logger.debug(f"Face {self.face_id} is gone, dropping packet")


@dataclass(eq=False)
class PendingEntry:
    link: FaceLink
    nonce: int
    expires_at: float


class Forwarder:
    """
    Local hub the faces connect to.

    Requests go to the face owning the longest matching registered prefix;
    responses go back to every requester still waiting on that exact name.
    """

    def __init__(self):
        self._face_ids = itertools.count(1)
        self.routes: dict[Name, FaceLink] = {}
        self.pending: dict[Name, list[PendingEntry]] = {}
        self._seen_nonces: dict[tuple[Name, int], float] = {}

    async def handle_connection(self, stream):
        """Serve one face until it disconnects."""
        send_chan, recv_chan = trio.open_memory_channel(math.inf)
        link = FaceLink(next(self._face_ids), send_chan)
        logger.info(f"Face {link.face_id} connected")
        try:
            async with trio.open_nursery() as nursery:
                nursery.start_soon(self._write_loop, stream, recv_chan)
                await self._read_loop(stream, link)
                nursery.cancel_scope.cancel()
        finally:
            send_chan.close()
            self._drop_face(link)
            logger.info(f"Face {link.face_id} disconnected")
            await stream.aclose()

    async def _write_loop(self, stream, recv_chan):
        async for wire in recv_chan:
            try:
                await send_msg(stream, wire)
            except (trio.BrokenResourceError, trio.ClosedResourceError):
                return

    async def _read_loop(self, stream, link):
        while True:
            try:
                wire = await recv_msg(stream)
            except (trio.BrokenResourceError, trio.ClosedResourceError):
                return
            except ProtocolError as e:
                logger.error(f"Face {link.face_id} sent an undecodable frame: {e}")
                return
            if wire is None:
                return

            if isinstance(wire, dict) and wire.get("type") == "register":
                try:
                    prefix = name_from_wire(wire.get("prefix"))
                except ProtocolError as e:
                    logger.warning(f"Face {link.face_id}: dropping malformed registration: {e}")
                    continue
                self.register(link, prefix)
                continue

            try:
                packet = packet_from_wire(wire)
            except ProtocolError as e:
                logger.warning(f"Face {link.face_id}: dropping malformed packet: {e}")
                continue

            if isinstance(packet, Request):
                self.on_request(link, packet)
            elif isinstance(packet, Response):
                self.on_response(link, packet)
            elif isinstance(packet, Nack):
                self.on_nack(link, packet)

    def register(self, link: FaceLink, prefix: Name):
        result = {"type": "register_result", "prefix": list(prefix.components)}
        owner = self.routes.get(prefix)
        if owner is not None and owner is not link:
            reason = f"prefix {prefix} already registered by face {owner.face_id}"
            logger.warning(f"Face {link.face_id}: registration refused, {reason}")
            link.send({**result, "ok": False, "reason": reason})
            return
        self.routes[prefix] = link
        logger.info(f"Face {link.face_id} registered {prefix}")
        link.send({**result, "ok": True, "reason": ""})

    def lookup(self, name: Name, exclude: FaceLink | None = None) -> FaceLink | None:
        """Longest-prefix match over registered prefixes."""
        best = None
        for prefix, link in self.routes.items():
            if link is exclude or not prefix.is_prefix_of(name):
                continue
            if best is None or len(prefix) > len(best[0]):
                best = (prefix, link)
        return best[1] if best else None

    def on_request(self, link: FaceLink, request: Request):
        now = trio.current_time()
        self._purge(now)

        key = (request.name, request.nonce)
        if key in self._seen_nonces:
            logger.debug(f"Duplicate nonce for {request.name}")
            link.send(Nack(request.name, request.nonce, NackReason.DUPLICATE).to_wire())
            return
        self._seen_nonces[key] = now + request.lifetime

        producer = self.lookup(request.name, exclude=link)
        if producer is None:
            logger.debug(f"No route for {request.name}")
            link.send(Nack(request.name, request.nonce, NackReason.NO_ROUTE).to_wire())
            return

        self.pending.setdefault(request.name, []).append(
            PendingEntry(link, request.nonce, now + request.lifetime)
        )
        producer.send(request.to_wire())

    def on_response(self, link: FaceLink, response: Response):
        now = trio.current_time()
        entries = self.pending.pop(response.name, [])
        delivered = 0
        for entry in entries:
            if entry.expires_at >= now and entry.link is not link:
                entry.link.send(response.to_wire())
                delivered += 1
        if not delivered:
            logger.debug(f"Face {link.face_id}: dropping unsolicited response {response.name}")

    def on_nack(self, link: FaceLink, nack: Nack):
        entries = self.pending.get(nack.name, [])
        for entry in entries:
            if entry.nonce == nack.nonce:
                entries.remove(entry)
                if not entries:
                    del self.pending[nack.name]
                entry.link.send(nack.to_wire())
                return

    def _purge(self, now):
        self._seen_nonces = {k: t for k, t in self._seen_nonces.items() if t >= now}
        for name in list(self.pending):
            live = [e for e in self.pending[name] if e.expires_at >= now]
            if live:
                self.pending[name] = live
            else:
                del self.pending[name]

    def _drop_face(self, link: FaceLink):
        for prefix in [p for p, owner in self.routes.items() if owner is link]:
            del self.routes[prefix]
        for name in list(self.pending):
            live = [e for e in self.pending[name] if e.link is not link]
            if live:
                self.pending[name] = live
            else:
                del self.pending[name]


async def open_unix_listener(path):
    """Create a high-level Unix socket listener."""
    sock = trio.socket.socket(trio.socket.AF_UNIX, trio.socket.SOCK_STREAM)
    await sock.bind(path)
    sock.listen()
    return [trio.SocketListener(sock)]


async def serve(socket_path):
    """Start the forwarder."""
    # Clean up previous socket
    if os.path.exists(socket_path):
        try:
            os.unlink(socket_path)
            logger.info(f"Cleaned up existing socket at {socket_path}")
        except OSError as e:
            logger.error(f"Failed to unlink socket: {e}")
            return 1

    forwarder = Forwarder()
    try:
        listeners = await open_unix_listener(socket_path)
        logger.info(f"Forwarder listening on {socket_path}")
        await trio.serve_listeners(forwarder.handle_connection, listeners)
    except OSError as e:
        logger.critical(f"Forwarder failed: {e}")
        return 1
    finally:
        if os.path.exists(socket_path):
            try:
                os.unlink(socket_path)
                logger.info(f"Cleaned up socket at {socket_path}")
            except OSError:
                pass
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="hello-forwarder",
        description="Local forwarder connecting hello clients and servers.",
    )
    parser.add_argument("--socket", default=FORWARDER_SOCKET_PATH, help="Unix socket path to listen on")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return trio.run(serve, args.socket)
    except KeyboardInterrupt:
        logger.info("Forwarder stopped by user")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
