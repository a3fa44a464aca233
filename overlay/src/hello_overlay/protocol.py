import enum
from dataclasses import dataclass, field

SEQUENCE_MARKER = "seq="
MAX_NONCE = 2**32 - 1


class ProtocolError(ValueError):
    """Raised for packets that cannot be decoded."""


@dataclass(frozen=True)
class Name:
    """
    Hierarchical name made of string components.

    Examples:
        Name.from_uri("/hello/world").append_sequence_number(3).to_uri()
        # -> "/hello/world/seq=3"
    """

    components: tuple[str, ...] = ()

    @classmethod
    def from_uri(cls, uri: str) -> "Name":
        return cls(tuple(part for part in uri.strip().split("/") if part))

    def to_uri(self) -> str:
        return "/" + "/".join(self.components)

    def append(self, component: str) -> "Name":
        if not component or "/" in component:
            raise ValueError(f"Invalid name component: {component!r}")
        return Name(self.components + (component,))

    def append_sequence_number(self, seq: int) -> "Name":
        if seq < 0:
            raise ValueError(f"Sequence number cannot be negative: {seq}")
        return self.append(f"{SEQUENCE_MARKER}{seq}")

    def is_prefix_of(self, other: "Name") -> bool:
        return other.components[: len(self.components)] == self.components

    def __len__(self):
        return len(self.components)

    def __str__(self):
        return self.to_uri()


class NackReason(str, enum.Enum):
    NONE = "None"
    CONGESTION = "Congestion"
    DUPLICATE = "Duplicate"
    NO_ROUTE = "NoRoute"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class Request:
    """A named, nonce-tagged request that expires after `lifetime` seconds."""

    name: Name
    nonce: int
    lifetime: float = 1.0
    can_be_prefix: bool = False
    must_be_fresh: bool = False

    def __post_init__(self):
        if not 0 <= self.nonce <= MAX_NONCE:
            raise ValueError(f"Nonce out of range: {self.nonce}")
        if self.lifetime <= 0:
            raise ValueError(f"Lifetime must be positive: {self.lifetime}")

    def to_wire(self) -> dict:
        return {
            "type": "request",
            "name": list(self.name.components),
            "nonce": self.nonce,
            "lifetime_ms": round(self.lifetime * 1000),
            "can_be_prefix": self.can_be_prefix,
            "must_be_fresh": self.must_be_fresh,
        }


@dataclass(frozen=True)
class Signature:
    type: str
    value: bytes
    key_name: str | None = None

    def to_wire(self) -> dict:
        return {"type": self.type, "value": self.value, "key_name": self.key_name}


@dataclass(frozen=True)
class Response:
    """A named payload answering one request; signed before transmission."""

    name: Name
    content: bytes = b""
    freshness_period: float | None = None
    signature: Signature | None = field(default=None, compare=False)

    def signed_portion(self) -> dict:
        freshness_ms = None
        if self.freshness_period is not None:
            freshness_ms = round(self.freshness_period * 1000)
        return {
            "name": list(self.name.components),
            "content": self.content,
            "freshness_ms": freshness_ms,
        }

    def to_wire(self) -> dict:
        wire = {"type": "response", **self.signed_portion()}
        wire["signature"] = self.signature.to_wire() if self.signature else None
        return wire


@dataclass(frozen=True)
class Nack:
    name: Name
    nonce: int
    reason: NackReason = NackReason.NONE

    def to_wire(self) -> dict:
        return {
            "type": "nack",
            "name": list(self.name.components),
            "nonce": self.nonce,
            "reason": self.reason.value,
        }


def name_from_wire(components) -> Name:
    """Decode the list-of-strings wire form of a name."""
    if not isinstance(components, list) or not all(
        isinstance(c, str) for c in components
    ):
        raise ProtocolError(f"Malformed name: {components!r}")
    return Name(tuple(components))


def _bytes_field(value, what: str) -> bytes:
    if not isinstance(value, bytes):
        raise ProtocolError(f"{what} must be bytes, got {type(value).__name__}")
    return value


def packet_from_wire(wire):
    """Decode a msgpack-ed dict into a Request, Response or Nack."""
    if not isinstance(wire, dict):
        raise ProtocolError(f"Packet must be a map, got {type(wire).__name__}")

    packet_type = wire.get("type")
    try:
        if packet_type == "request":
            return Request(
                name=name_from_wire(wire["name"]),
                nonce=wire["nonce"],
                lifetime=wire["lifetime_ms"] / 1000,
                can_be_prefix=wire.get("can_be_prefix", False),
                must_be_fresh=wire.get("must_be_fresh", False),
            )
        if packet_type == "response":
            freshness_ms = wire.get("freshness_ms")
            sig = wire.get("signature")
            return Response(
                name=name_from_wire(wire["name"]),
                content=_bytes_field(wire.get("content", b""), "content"),
                freshness_period=None if freshness_ms is None else freshness_ms / 1000,
                signature=Signature(
                    type=sig["type"],
                    value=_bytes_field(sig["value"], "signature value"),
                    key_name=sig.get("key_name"),
                )
                if sig
                else None,
            )
        if packet_type == "nack":
            return Nack(
                name=name_from_wire(wire["name"]),
                nonce=wire["nonce"],
                reason=NackReason(wire.get("reason", NackReason.NONE.value)),
            )
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(e, ProtocolError):
            raise
        raise ProtocolError(f"Malformed {packet_type} packet: {e}") from e

    raise ProtocolError(f"Unknown packet type: {packet_type!r}")
