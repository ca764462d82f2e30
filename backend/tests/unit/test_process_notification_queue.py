"""
Unit tests for notifications/process_notification_queue.py

Tests CLI argument handling and that each action reaches the right
service component.
"""

import unittest
from unittest.mock import MagicMock, patch

from notifications.process_notification_queue import cleanup_queue, main, process_queue


@patch("builtins.print")
@patch("notifications.process_notification_queue.build_service")
class TestMain(unittest.TestCase):
    """Tests for main()"""

    def test_process_queue(self, mock_build, mock_print):
        service = mock_build.return_value
        service.queue_processor.process_batch.return_value = {
            "processed": 1,
            "sent": 1,
            "failed": 0,
            "requeued": 0,
        }

        main(["--process-queue"])

        service.queue_processor.process_batch.assert_called_once()

    def test_cleanup(self, mock_build, mock_print):
        service = mock_build.return_value
        service.queue_processor.expire_and_cleanup.return_value = {"expired": 0, "purged": 0}

        main(["--cleanup"])

        service.queue_processor.expire_and_cleanup.assert_called_once()

    def test_reset_throttle_for_search(self, mock_build, mock_print):
        main(["--reset-throttle", "--user-id", "user-1", "--search-id", "101"])

        mock_build.return_value.throttle.reset_daily_counts.assert_called_once_with(
            user_id="user-1", search_id="101"
        )

    def test_operator_actions(self, mock_build, mock_print):
        main(["--retry-item", "42", "--remove-item", "43", "--clear-failed"])

        queue = mock_build.return_value.retry_queue
        queue.retry_item.assert_called_once_with("42")
        queue.remove_item.assert_called_once_with("43")
        queue.clear_failed.assert_called_once()

    def test_stats(self, mock_build, mock_print):
        service = mock_build.return_value
        service.retry_queue.get_statistics.return_value = {"queued": 2}
        service.throttle.get_statistics.return_value = {"total_sent": 5}

        main(["--stats", "--user-id", "user-1"])

        service.throttle.get_statistics.assert_called_once_with("user-1")

    def test_no_action_is_an_error(self, mock_build, mock_print):
        with patch("sys.stderr"), self.assertRaises(SystemExit):
            main([])

        mock_build.assert_not_called()

    def test_search_id_requires_user_id(self, mock_build, mock_print):
        with patch("sys.stderr"), self.assertRaises(SystemExit):
            main(["--reset-throttle", "--search-id", "101"])


@patch("builtins.print")
class TestQueueJobs(unittest.TestCase):
    """Tests for process_queue() and cleanup_queue() error handling"""

    @patch("notifications.process_notification_queue.log_notification_error")
    def test_process_queue_failure_logged(self, mock_log, mock_print):
        service = MagicMock()
        service.queue_processor.process_batch.side_effect = RuntimeError("db down")

        stats = process_queue(service)

        self.assertEqual(stats, {"processed": 0, "sent": 0, "failed": 0, "requeued": 0})
        self.assertEqual(mock_log.call_args.kwargs["error_type"], "queue_processing")

    @patch("notifications.process_notification_queue.log_notification_error")
    def test_cleanup_failure_logged(self, mock_log, mock_print):
        service = MagicMock()
        service.queue_processor.expire_and_cleanup.side_effect = RuntimeError("db down")

        self.assertEqual(cleanup_queue(service), {"expired": 0, "purged": 0})
        mock_log.assert_called_once()


if __name__ == "__main__":
    unittest.main()
