"""Unit tests for notifications/error_logger.py"""

import os
import tempfile
import unittest
from unittest.mock import patch

from notifications.error_logger import log_notification_error


class TestLogNotificationError(unittest.TestCase):
    """Tests for log_notification_error()"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        env_patcher = patch.dict("os.environ", {"NOTIFICATION_LOG_DIR": self.tmp.name})
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

    def test_writes_report_file(self):
        path = log_notification_error(
            error_type="dispatch",
            error_message="email channel failed",
            context={"listing_id": "A1001", "channels": ["app", "email"]},
        )

        self.assertEqual(os.path.dirname(path), self.tmp.name)
        self.assertIn("notification_error_dispatch_", os.path.basename(path))
        with open(path, encoding="utf-8") as f:
            report = f.read()
        self.assertIn("Error Type: dispatch", report)
        self.assertIn("Error Message: email channel failed", report)
        self.assertIn("listing_id: A1001", report)
        self.assertIn('"email"', report)

    def test_without_context(self):
        path = log_notification_error(error_type="matching", error_message="boom")

        with open(path, encoding="utf-8") as f:
            self.assertNotIn("Context:", f.read())


if __name__ == "__main__":
    unittest.main()
