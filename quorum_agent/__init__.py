"""Test-node agent for driving multi-node quorum integration tests."""
