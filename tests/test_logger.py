"""
Tests for root logger configuration.
"""

import logging

from usage_ledger.config.logger import LOG_FORMAT, configure_logging


class TestConfigureLogging:

    def setup_method(self):
        self.root = logging.getLogger()
        self.saved_handlers = self.root.handlers[:]
        self.saved_level = self.root.level

    def teardown_method(self):
        self.root.handlers[:] = self.saved_handlers
        self.root.setLevel(self.saved_level)

    def test_single_handler_with_level(self):
        configure_logging(logging.WARNING)
        configure_logging(logging.DEBUG)

        assert len(self.root.handlers) == 1
        assert self.root.level == logging.DEBUG
        assert self.root.handlers[0].formatter._fmt == LOG_FORMAT
