"""Orchestration helpers for quorum integration tests.

Each helper drives one NodeAgent through an InstanceManager:
- create_server: assign an agent and return the addresses it reports
- start_instance: hand an agent the quorum and start its peer
- stop_instance: stop an agent's peer

quorum_environment strings these together to bring a whole quorum up and
down around a block of test code.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from quorum_agent.addresses import NodeAddress, format_peer_spec, parse_address_report
from quorum_agent.instance_manager import InstanceManager, NoAssignmentError
from quorum_agent.node_agent import NodeAgent

ASSIGN_WEIGHT = 50
CREATE_TIMEOUT = 3.0  # seconds
START_TIMEOUT = 5.0  # seconds
STOP_TIMEOUT = 3.0  # seconds


def server_name(index: int) -> str:
    return f"server{index}"


def create_server(
    manager: InstanceManager,
    index: int,
    factory: Callable[[], NodeAgent] = NodeAgent,
) -> str:
    """Assign a NodeAgent for server `index`.

    Args:
        manager: The InstanceManager that will manage the new instance
        index: Zero based server number
        factory: Creates the agent (tests pass one with a stub peer)

    Returns:
        The "host:port,host:port" address report of the new server.
    """
    name = server_name(index)
    manager.assign_instance(name, factory, str(index), ASSIGN_WEIGHT)
    return manager.get_status(name, CREATE_TIMEOUT)


def start_instance(manager: InstanceManager, quorum_host_port: str, index: int) -> str:
    """Start the quorum peer of server `index`.

    Args:
        manager: The manager of the instance
        quorum_host_port: Comma-separated host:port peer addresses of the quorum
        index: Zero based server number
    """
    name = server_name(index)
    manager.reset_status(name)
    manager.reconfigure_instance(name, f"{quorum_host_port} start")
    return manager.get_status(name, START_TIMEOUT)


def stop_instance(manager: InstanceManager, index: int) -> str:
    """Stop the quorum peer of server `index`."""
    name = server_name(index)
    manager.reset_status(name)
    manager.reconfigure_instance(name, f"{index} stop")
    return manager.get_status(name, STOP_TIMEOUT)


@dataclass
class QuorumContext:
    """Context passed to code running against a live quorum."""

    manager: InstanceManager
    addresses: list[NodeAddress]
    quorum_spec: str

    def __len__(self) -> int:
        return len(self.addresses)


@contextmanager
def quorum_environment(
    manager: InstanceManager,
    count: int,
    factory: Callable[[], NodeAgent] = NodeAgent,
) -> Iterator[QuorumContext]:
    """Context manager for a running quorum of `count` servers.

    Sets up:
    - One NodeAgent per server
    - The quorum spec from every server's peer address
    - Started peers on every server

    Tears down:
    - Stops every started peer
    - Removes every assigned instance (deleting its working directory)

    Yields:
        QuorumContext with the manager, server addresses and quorum spec
    """
    started: list[int] = []
    try:
        addresses = []
        for index in range(count):
            report = create_server(manager, index, factory)
            addresses.append(parse_address_report(report))

        quorum_spec = format_peer_spec([address.peer for address in addresses])
        for index in range(count):
            start_instance(manager, quorum_spec, index)
            started.append(index)

        yield QuorumContext(manager, addresses, quorum_spec)
    finally:
        try:
            for index in started:
                stop_instance(manager, index)
        finally:
            for index in range(count):
                try:
                    manager.remove_instance(server_name(index))
                except NoAssignmentError:
                    pass  # Never assigned
