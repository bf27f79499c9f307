"""Launching and stopping a single quorum peer process."""

import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from runfiles import runfiles

from quorum_agent.addresses import Endpoint

logger = logging.getLogger(__name__)

# Runfiles path of the quorum peer binary
DEFAULT_PEER_BINARY = "_main/quorum_peer/quorum_peer"
PEER_BINARY_ENV = "QUORUM_PEER_BINARY"

CONFIG_FILE = "zoo.cfg"
MYID_FILE = "myid"

SIGTERM_TIMEOUT = 2  # seconds


@dataclass(frozen=True)
class PeerTiming:
    """Timing parameters handed to the quorum peer."""

    tick_time: int = 2000  # milliseconds
    init_limit: int = 3  # ticks
    sync_limit: int = 3  # ticks


DEFAULT_TIMING = PeerTiming()


@dataclass(frozen=True)
class PeerConfig:
    """Everything needed to launch one quorum peer."""

    server_id: int
    client_port: int
    data_dir: str
    peers: dict[int, Endpoint] = field(default_factory=dict)
    timing: PeerTiming = DEFAULT_TIMING


class PeerHandle(Protocol):
    def start(self) -> None: ...

    def shutdown(self) -> None: ...


PeerFactory = Callable[[PeerConfig], PeerHandle]


def render_config(config: PeerConfig) -> str:
    """Render a PeerConfig as key=value lines."""
    lines = [
        f"tickTime={config.timing.tick_time}",
        f"initLimit={config.timing.init_limit}",
        f"syncLimit={config.timing.sync_limit}",
        f"dataDir={config.data_dir}",
        f"dataLogDir={config.data_dir}",
        f"clientPort={config.client_port}",
        "electionAlg=0",
    ]
    for server_id, endpoint in sorted(config.peers.items()):
        lines.append(f"server.{server_id}={endpoint}")
    return "\n".join(lines) + "\n"


def resolve_peer_command() -> list[str]:
    """Find the quorum peer binary.

    QUORUM_PEER_BINARY wins over the runfiles location.

    Raises:
        FileNotFoundError: if the binary can't be located.
    """
    override = os.environ.get(PEER_BINARY_ENV)
    if override:
        return [override]

    binary = DEFAULT_PEER_BINARY
    if sys.platform == "win32":
        binary += ".exe"

    r = runfiles.Create()
    resolved = r.Rlocation(binary) if r is not None else None
    if resolved is None:
        raise FileNotFoundError(f"Couldn't find {binary}")
    return [resolved]


class QuorumPeer:
    """A quorum peer running as a child process.

    The peer gets its configuration as a file in its data directory; the
    command is run with that file's path appended.
    """

    def __init__(self, config: PeerConfig, command: Optional[Sequence[str]] = None):
        self.config = config
        self.command = list(command) if command is not None else resolve_peer_command()
        self._process: Optional[subprocess.Popen] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def config_path(self) -> Path:
        return Path(self.config.data_dir) / CONFIG_FILE

    def _write_config(self) -> None:
        data_dir = Path(self.config.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(render_config(self.config))
        (data_dir / MYID_FILE).write_text(f"{self.config.server_id}\n")

    def start(self) -> None:
        """Write the config and launch the peer.

        Raises:
            OSError: if the config can't be written or the binary can't be run.
        """
        if self._process is not None:
            return

        self._write_config()
        self._process = subprocess.Popen(
            [*self.command, str(self.config_path)],
            cwd=self.config.data_dir,
        )
        logger.info(
            "Started quorum peer %d with PID %d on client port %d",
            self.config.server_id,
            self._process.pid,
            self.config.client_port,
        )

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def shutdown(self) -> None:
        """Stop the peer, killing it if SIGTERM isn't enough."""
        proc = self._process
        if proc is None:
            return

        if proc.poll() is None:
            try:
                proc.send_signal(signal.SIGTERM)
            except OSError:
                pass  # Process may have already exited

            deadline = time.time() + SIGTERM_TIMEOUT
            while time.time() < deadline and proc.poll() is None:
                time.sleep(0.05)

            if proc.poll() is None:
                logger.warning(
                    "Killing quorum peer %d (PID %d)", self.config.server_id, proc.pid
                )
                try:
                    proc.kill()
                except OSError:
                    pass

        proc.wait()
        logger.info(
            "Quorum peer %d exited with code %d", self.config.server_id, proc.returncode
        )
        self._process = None
