"""Tests for the instance manager and the orchestration helpers."""

import functools
import os
import sys
import unittest
from pathlib import Path

from quorum_agent.addresses import parse_address_report
from quorum_agent.instance_manager import (
    DuplicateNameError,
    LocalInstanceManager,
    NoAssignmentError,
    NoAvailableContainersError,
    StatusTimeoutError,
)
from quorum_agent.node_agent import AgentState, NodeAgent
from quorum_agent.orchestration import (
    ASSIGN_WEIGHT,
    create_server,
    quorum_environment,
    server_name,
    start_instance,
    stop_instance,
)
from quorum_agent.quorum_peer import QuorumPeer
from quorum_agent.readiness import is_reachable

STUB = str(Path(__file__).parent / "quorum_peer_stub.py")


def stub_peer(config):
    return QuorumPeer(config, [sys.executable, STUB])


class SilentInstance:
    """An instance that never reports anything."""

    def __init__(self):
        self.configured: list[str] = []
        self.torn_down = False

    def set_reporter(self, reporter):
        pass

    def configure(self, params):
        self.configured.append(params)

    def teardown(self):
        self.torn_down = True


class LocalInstanceManagerTest(unittest.TestCase):
    def setUp(self):
        self.manager = LocalInstanceManager()

    def tearDown(self):
        self.manager.close()

    def test_duplicate_name(self):
        self.manager.assign_instance("server0", SilentInstance, "0", ASSIGN_WEIGHT)
        with self.assertRaises(DuplicateNameError):
            self.manager.assign_instance("server0", SilentInstance, "0", ASSIGN_WEIGHT)

    def test_capacity(self):
        manager = LocalInstanceManager(capacity=100)
        try:
            manager.assign_instance("a", SilentInstance, "0", 50)
            manager.assign_instance("b", SilentInstance, "1", 50)
            with self.assertRaises(NoAvailableContainersError):
                manager.assign_instance("c", SilentInstance, "2", 50)
        finally:
            manager.close()

    def test_unknown_instance(self):
        with self.assertRaises(NoAssignmentError):
            self.manager.reset_status("nobody")
        with self.assertRaises(NoAssignmentError):
            self.manager.reconfigure_instance("nobody", "x stop")
        with self.assertRaises(NoAssignmentError):
            self.manager.get_status("nobody", 0.1)
        with self.assertRaises(NoAssignmentError):
            self.manager.remove_instance("nobody")

    def test_status_timeout(self):
        self.manager.assign_instance("server0", SilentInstance, "0", ASSIGN_WEIGHT)
        with self.assertRaises(StatusTimeoutError):
            self.manager.get_status("server0", 0.2)

    def test_remove_tears_down(self):
        instance = SilentInstance()
        self.manager.assign_instance("server0", lambda: instance, "0", ASSIGN_WEIGHT)
        self.manager.reconfigure_instance("server0", "h:1 stop")
        self.manager.remove_instance("server0")

        self.assertTrue(instance.torn_down)
        self.assertEqual(instance.configured, ["0", "h:1 stop"])
        self.assertEqual(self.manager.instance_names(), [])

    def test_reset_status(self):
        agent_factory = functools.partial(NodeAgent, poll_interval=0.01)
        self.manager.assign_instance("server0", agent_factory, "0", ASSIGN_WEIGHT)
        self.manager.get_status("server0", 3.0)

        self.manager.reset_status("server0")
        with self.assertRaises(StatusTimeoutError):
            self.manager.get_status("server0", 0.1)


class HelpersTest(unittest.TestCase):
    def setUp(self):
        self.manager = LocalInstanceManager()
        self.factory = functools.partial(NodeAgent, peer_factory=stub_peer)

    def tearDown(self):
        self.manager.close()

    def test_server_name(self):
        self.assertEqual(server_name(2), "server2")

    def test_create_start_stop(self):
        address = parse_address_report(create_server(self.manager, 0, self.factory))

        self.assertEqual(
            start_instance(self.manager, str(address.peer), 0), "started"
        )
        self.assertTrue(is_reachable(address.client.host, address.client.port))

        self.assertEqual(stop_instance(self.manager, 0), "stopped")

    def test_stop_before_start(self):
        create_server(self.manager, 1, self.factory)
        self.assertEqual(stop_instance(self.manager, 1), "stopped")

    def test_unassigned_server(self):
        with self.assertRaises(NoAssignmentError):
            start_instance(self.manager, "127.0.0.1:3001", 7)
        with self.assertRaises(NoAssignmentError):
            stop_instance(self.manager, 7)

    def test_silent_server_times_out(self):
        with self.assertRaises(StatusTimeoutError):
            create_server(self.manager, 0, SilentInstance)


class QuorumEnvironmentTest(unittest.TestCase):
    def test_three_node_quorum(self):
        agents: list[NodeAgent] = []

        def factory():
            agent = NodeAgent(peer_factory=stub_peer)
            agents.append(agent)
            return agent

        with LocalInstanceManager() as manager:
            with quorum_environment(manager, 3, factory) as ctx:
                self.assertEqual(len(ctx), 3)
                self.assertEqual(
                    ctx.quorum_spec, ",".join(str(a.peer) for a in ctx.addresses)
                )
                for agent in agents:
                    self.assertEqual(agent.state, AgentState.RUNNING)
                    self.assertEqual(len(agent.peers), 3)
                for address in ctx.addresses:
                    self.assertTrue(
                        is_reachable(address.client.host, address.client.port)
                    )

            self.assertEqual(manager.instance_names(), [])

        for agent in agents:
            self.assertEqual(agent.state, AgentState.DESTROYED)
            self.assertFalse(os.path.exists(agent.working_dir))


if __name__ == "__main__":
    unittest.main()
