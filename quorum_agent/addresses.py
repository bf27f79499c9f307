"""Endpoint types and the text formats used by the configuration protocol."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Endpoint:
    """A host and TCP port."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class NodeAddress:
    """The client-facing and peer-facing endpoints of one node."""

    client: Endpoint
    peer: Endpoint

    def __str__(self) -> str:
        return f"{self.client},{self.peer}"


def parse_endpoint(text: str) -> Endpoint:
    """Parse "host:port" into an Endpoint.

    Raises:
        ValueError: if the text has no port or the port is not a number.
    """
    host, sep, port = text.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"expected host:port, got {text!r}")
    return Endpoint(host, int(port))


def parse_peer_spec(spec: str) -> dict[int, Endpoint]:
    """Parse a comma-separated list of host:port peers.

    Identities are assigned by list position, so "h0:p0,h1:p1" maps
    0 to h0:p0 and 1 to h1:p1.
    """
    return {i: parse_endpoint(member) for i, member in enumerate(spec.split(","))}


def format_peer_spec(peers: list[Endpoint]) -> str:
    return ",".join(str(peer) for peer in peers)


def parse_address_report(report: str) -> NodeAddress:
    """Parse the "<client>,<peer>" report sent after identity assignment."""
    client, sep, peer = report.partition(",")
    if not sep:
        raise ValueError(f"expected client,peer address pair, got {report!r}")
    return NodeAddress(parse_endpoint(client), parse_endpoint(peer))
