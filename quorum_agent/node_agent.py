"""Test-node agent that runs one quorum peer on behalf of an orchestrator.

The agent is driven by configuration strings:

- The first string is the node's decimal identity. The agent reserves a
  client port and a peer port and reports them as "host:port,host:port".
- Every later string is "<host:port,...> <start|stop>". The peer list gives
  the peer-facing address of every member of the quorum, in id order. The
  agent reports "started" or "stopped" when it's done.

Reports are best effort: "started" is sent even if the peer never accepts a
connection within the poll window, and "stopped" is sent even if it was not
running. Malformed strings are logged and produce no report at all.
"""

import enum
import logging
import shutil
import socket
import tempfile
from collections.abc import Callable
from typing import Optional

from quorum_agent.addresses import Endpoint, NodeAddress, parse_peer_spec
from quorum_agent.quorum_peer import (
    DEFAULT_TIMING,
    PeerConfig,
    PeerFactory,
    PeerHandle,
    PeerTiming,
    QuorumPeer,
)
from quorum_agent.readiness import POLL_ATTEMPTS, POLL_INTERVAL, wait_for_port

logger = logging.getLogger(__name__)

Reporter = Callable[[str], None]

DEFAULT_HOST = "127.0.0.1"


class AgentState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    IDLE = "idle"
    RUNNING = "running"
    DESTROYED = "destroyed"


def reserve_ports(host: str, count: int = 2) -> list[int]:
    """Have the OS pick `count` distinct free ports on host.

    The listening sockets are closed again before returning, so the ports
    are only likely to be free, not guaranteed.
    """
    sockets: list[socket.socket] = []
    try:
        for _ in range(count):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sockets.append(sock)
            sock.bind((host, 0))
            sock.listen(1)
        return [sock.getsockname()[1] for sock in sockets]
    finally:
        for sock in sockets:
            sock.close()


class NodeAgent:
    """Controls the lifecycle of one quorum peer for an orchestrator."""

    def __init__(
        self,
        reporter: Optional[Reporter] = None,
        host: str = DEFAULT_HOST,
        timing: PeerTiming = DEFAULT_TIMING,
        peer_factory: PeerFactory = QuorumPeer,
        poll_attempts: int = POLL_ATTEMPTS,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.host = host
        self.timing = timing
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._reporter = reporter
        self._peer_factory = peer_factory
        self._state = AgentState.UNCONFIGURED
        self._server_id: Optional[int] = None
        self._address: Optional[NodeAddress] = None
        self._peers: dict[int, Endpoint] = {}
        self._peer: Optional[PeerHandle] = None
        self._working_dir: Optional[str] = None

        try:
            self._working_dir = tempfile.mkdtemp(prefix="quorum-agent-", suffix=".dir")
        except OSError:
            logger.exception("Could not create working directory")

    def set_reporter(self, reporter: Reporter) -> None:
        self._reporter = reporter

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def server_id(self) -> Optional[int]:
        return self._server_id

    @property
    def address(self) -> Optional[NodeAddress]:
        return self._address

    @property
    def peers(self) -> dict[int, Endpoint]:
        return dict(self._peers)

    @property
    def working_dir(self) -> Optional[str]:
        return self._working_dir

    @property
    def is_running(self) -> bool:
        return self._peer is not None

    def _report(self, status: str) -> None:
        if self._reporter is None:
            logger.warning("No reporter set, dropping report %r", status)
            return
        logger.debug("Reporting %s", status)
        self._reporter(status)

    def configure(self, params: str) -> None:
        """Handle one configuration string from the orchestrator."""
        if self._state is AgentState.UNCONFIGURED:
            try:
                server_id = int(params)
            except ValueError:
                logger.warning("Expected a server id, but found %r", params)
                return
            self.assign_identity(server_id)
        elif self._state is AgentState.DESTROYED:
            logger.warning("Agent was torn down, ignoring %r", params)
        else:
            self.apply_command(params)

    def assign_identity(self, server_id: int) -> None:
        """Take on an identity and reserve the node's client and peer ports."""
        if self._state is not AgentState.UNCONFIGURED:
            logger.warning(
                "Server %s already has addresses %s, ignoring id %d",
                self._server_id,
                self._address,
                server_id,
            )
            return

        logger.info("Setting up server %d", server_id)
        try:
            client_port, peer_port = reserve_ports(self.host)
        except OSError:
            logger.exception("Could not reserve ports for server %d", server_id)
            return

        self._server_id = server_id
        self._address = NodeAddress(
            Endpoint(self.host, client_port), Endpoint(self.host, peer_port)
        )
        self._state = AgentState.IDLE
        self._report(str(self._address))

    def apply_command(self, spec: str) -> None:
        """Handle "<host:port,...> <start|stop>"."""
        if self._state not in (AgentState.IDLE, AgentState.RUNNING):
            logger.warning("Can't run %r while %s", spec, self._state.value)
            return

        quorum_spec, sep, cmd = spec.partition(" ")
        if not sep:
            logger.warning("Looking for host:port,... start|stop, but found %r", spec)
            return

        cmd = cmd.strip()
        logger.debug("Running command: %s", cmd)
        if cmd == "start":
            self._start(quorum_spec)
        elif cmd == "stop":
            self._stop()
        else:
            logger.warning("Unknown command %r, expected start or stop", cmd)

    def _start(self, quorum_spec: str) -> None:
        if self._peer is not None:
            logger.warning("Peer %d already started", self._server_id)
            return

        try:
            peers = parse_peer_spec(quorum_spec)
        except ValueError as e:
            logger.warning("Bad peer list %r: %s", quorum_spec, e)
            return
        self._peers = peers

        client = self._address.client
        config = PeerConfig(
            server_id=self._server_id,
            client_port=client.port,
            data_dir=self._working_dir,
            peers=peers,
            timing=self.timing,
        )
        logger.debug(
            "Starting quorum peer %d on port %d", self._server_id, client.port
        )
        try:
            peer = self._peer_factory(config)
            peer.start()
        except Exception:
            logger.exception("Failed starting quorum peer %d", self._server_id)
            return

        self._peer = peer
        self._state = AgentState.RUNNING

        if not wait_for_port(
            client.host,
            client.port,
            reachable=True,
            attempts=self.poll_attempts,
            interval=self.poll_interval,
        ):
            logger.warning(
                "Quorum peer %d not accepting connections on %s yet",
                self._server_id,
                client,
            )
        self._report("started")

    def _shutdown_peer(self) -> None:
        peer, self._peer = self._peer, None
        if peer is None:
            return
        try:
            peer.shutdown()
        except Exception:
            logger.exception("Error shutting down quorum peer %s", self._server_id)

    def _stop(self) -> None:
        self._shutdown_peer()
        self._state = AgentState.IDLE

        client = self._address.client
        if not wait_for_port(
            client.host,
            client.port,
            reachable=False,
            attempts=self.poll_attempts,
            interval=self.poll_interval,
        ):
            logger.warning(
                "Something is still accepting connections on %s after stop", client
            )
        self._report("stopped")

    def teardown(self) -> None:
        """Stop the peer if needed and delete the working directory."""
        if self._state is AgentState.DESTROYED:
            return

        logger.debug("Stopping peer %s", self._server_id)
        self._shutdown_peer()

        if self._working_dir is not None:
            try:
                shutil.rmtree(self._working_dir)
            except OSError as e:
                logger.warning("Failed to cleanup %s: %s", self._working_dir, e)
        self._state = AgentState.DESTROYED
