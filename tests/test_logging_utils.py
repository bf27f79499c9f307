"""Tests for logging setup."""

import logging
import unittest

from quorum_agent.logging_utils import LOGGER_NAME, configure_logging


class ConfigureLoggingTest(unittest.TestCase):
    def setUp(self):
        self.logger = logging.getLogger(LOGGER_NAME)
        self.saved = (list(self.logger.handlers), self.logger.level, self.logger.propagate)
        for handler in self.saved[0]:
            self.logger.removeHandler(handler)

    def tearDown(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
        handlers, level, propagate = self.saved
        for handler in handlers:
            self.logger.addHandler(handler)
        self.logger.setLevel(level)
        self.logger.propagate = propagate

    def test_adds_one_handler(self):
        configure_logging(logging.DEBUG)
        configure_logging(logging.DEBUG)
        self.assertEqual(len(self.logger.handlers), 1)
        self.assertEqual(self.logger.level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
