import struct

import msgpack
import trio

from hello_overlay.protocol import ProtocolError

HEADER = struct.Struct("!I")
MAX_PACKET_SIZE = 8800


class FramingError(ProtocolError):
    """Raised when a frame is too large or its body is not valid msgpack."""


async def receive_exactly(stream, n):
    """Receive exactly n bytes from a Trio stream."""
    buf = bytearray()
    while len(buf) < n:
        chunk = await stream.receive_some(n - len(buf))
        if not chunk:
            raise trio.EndOfChannel
        buf.extend(chunk)
    return bytes(buf)


def encode_frame(obj) -> bytes:
    data = msgpack.packb(obj, use_bin_type=True)
    if len(data) > MAX_PACKET_SIZE:
        raise FramingError(f"Packet of {len(data)} bytes exceeds {MAX_PACKET_SIZE}")
    return HEADER.pack(len(data)) + data


async def send_msg(stream, obj):
    await stream.send_all(encode_frame(obj))


async def recv_msg(stream):
    """Read one frame; returns None once the peer has closed the stream."""
    try:
        header = await receive_exactly(stream, HEADER.size)
        (size,) = HEADER.unpack(header)
        if size > MAX_PACKET_SIZE:
            raise FramingError(f"Incoming frame of {size} bytes exceeds {MAX_PACKET_SIZE}")
        payload = await receive_exactly(stream, size)
    except trio.EndOfChannel:
        return None

    try:
        return msgpack.unpackb(payload, raw=False)
    except ValueError as e:
        raise FramingError(f"Undecodable frame: {e}") from e
