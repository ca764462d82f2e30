"""
Unit tests for notifications/throttle_manager.py

Tests quiet hours (including windows that wrap past midnight), the daily
cap, rate limiting with bursts, bulk-import detection, admin overrides and
the counter bookkeeping behind each decision.
"""

import threading
import unittest
from datetime import datetime, time, timedelta
from unittest.mock import Mock, patch

from config.notification_settings import NotificationSettings
from models.notification import BlockReason, NotificationPreferences
from notifications.throttle_manager import (
    BulkImportDetector,
    ThrottleManager,
    daily_limit_retry_after,
    is_quiet_hours,
    quiet_hours_retry_after,
)
from shared.utils import market_timezone
from tests.fixtures.fake_repository import FakeRepository


def local(*args) -> datetime:
    return datetime(*args, tzinfo=market_timezone())


class TestQuietHoursWindow(unittest.TestCase):
    """Tests for is_quiet_hours() and quiet_hours_retry_after()"""

    def test_overnight_window(self):
        """22:00-06:00 wraps past midnight"""
        start, end = time(22, 0), time(6, 0)

        self.assertTrue(is_quiet_hours(time(23, 0), start, end))
        self.assertTrue(is_quiet_hours(time(3, 0), start, end))
        self.assertFalse(is_quiet_hours(time(10, 0), start, end))
        self.assertFalse(is_quiet_hours(time(21, 59), start, end))

    def test_bounds_are_inclusive(self):
        start, end = time(22, 0), time(6, 0)

        self.assertTrue(is_quiet_hours(time(22, 0), start, end))
        self.assertTrue(is_quiet_hours(time(6, 0), start, end))

    def test_same_day_window(self):
        start, end = time(13, 0), time(14, 0)

        self.assertTrue(is_quiet_hours(time(13, 30), start, end))
        self.assertFalse(is_quiet_hours(time(23, 0), start, end))

    def test_retry_after_midnight_is_same_morning(self):
        retry = quiet_hours_retry_after(local(2026, 3, 10, 3, 0), time(6, 0))

        self.assertEqual(retry, local(2026, 3, 10, 6, 0))

    def test_retry_before_midnight_is_next_morning(self):
        retry = quiet_hours_retry_after(local(2026, 3, 10, 23, 30), time(6, 0))

        self.assertEqual(retry, local(2026, 3, 11, 6, 0))

    def test_daily_limit_retry(self):
        self.assertEqual(daily_limit_retry_after(local(2026, 3, 10, 14, 0)), local(2026, 3, 11, 6, 0))


class ThrottleTestCase(unittest.TestCase):
    """Shared setup: fake repository and a clock the test can move"""

    settings = NotificationSettings()

    def setUp(self):
        self.repo = FakeRepository()
        self.now = local(2026, 3, 10, 14, 0)
        self.throttle = ThrottleManager(self.repo, self.settings, clock=lambda: self.now)
        self.prefs = NotificationPreferences(user_id="user-1")

    def decide(self, user_id="user-1", search_id="101", prefs=None):
        return self.throttle.decide(user_id, search_id, "new_listing", {}, prefs or self.prefs)

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class TestQuietHoursDecisions(ThrottleTestCase):
    """Tests for quiet-hours blocking"""

    def test_blocked_late_evening(self):
        """23:30 with a 22:00-06:00 window waits until tomorrow 06:00"""
        self.now = local(2026, 3, 10, 23, 30)

        decision = self.decide()

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, BlockReason.QUIET_HOURS)
        self.assertEqual(decision.retry_after, local(2026, 3, 11, 6, 0))

    def test_block_counts_as_throttled_not_sent(self):
        self.now = local(2026, 3, 10, 23, 30)

        self.decide()

        row = self.repo.get_throttle_rows(self.now.date())[0]
        self.assertEqual(row.throttled_count, 1)
        self.assertEqual(row.notification_count, 0)

    def test_user_quiet_hours_disabled(self):
        self.now = local(2026, 3, 10, 23, 30)
        prefs = NotificationPreferences(user_id="user-1", quiet_hours_enabled=False)

        self.assertTrue(self.decide(prefs=prefs).allowed)

    def test_custom_user_window(self):
        self.now = local(2026, 3, 10, 23, 30)
        prefs = NotificationPreferences(
            user_id="user-1", quiet_hours_start="01:00", quiet_hours_end="02:00"
        )

        self.assertTrue(self.decide(prefs=prefs).allowed)

    def test_admin_override_forces_default_window(self):
        self.throttle.settings = NotificationSettings(override_user_quiet_hours=True)
        self.now = local(2026, 3, 10, 23, 30)
        prefs = NotificationPreferences(
            user_id="user-1", quiet_hours_start="01:00", quiet_hours_end="02:00"
        )

        decision = self.decide(prefs=prefs)

        self.assertEqual(decision.reason, BlockReason.QUIET_HOURS)
        self.assertEqual(decision.retry_after, local(2026, 3, 11, 6, 0))

    def test_global_quiet_hours_off(self):
        self.throttle.settings = NotificationSettings(global_quiet_hours_enabled=False)
        self.now = local(2026, 3, 10, 23, 30)

        self.assertTrue(self.decide().allowed)


class TestDailyLimit(ThrottleTestCase):
    """Tests for the per-search daily cap"""

    def test_cap_reached(self):
        """The (max + 1)th notification of the day waits until 06:00 tomorrow"""
        prefs = NotificationPreferences(user_id="user-1", max_daily_notifications=2)

        self.assertTrue(self.decide(prefs=prefs).allowed)
        self.advance(61)
        self.assertTrue(self.decide(prefs=prefs).allowed)
        self.advance(61)
        decision = self.decide(prefs=prefs)

        self.assertEqual(decision.reason, BlockReason.DAILY_LIMIT)
        self.assertEqual(decision.retry_after, local(2026, 3, 11, 6, 0))
        self.assertEqual(self.repo.get_throttle_count("user-1", "101", self.now.date()), 2)

    def test_cap_is_per_search(self):
        prefs = NotificationPreferences(user_id="user-1", max_daily_notifications=1)

        self.assertTrue(self.decide(search_id="101", prefs=prefs).allowed)
        self.assertTrue(self.decide(search_id="102", prefs=prefs).allowed)

    def test_concurrent_decisions_respect_cap(self):
        """Parallel decisions for one search never exceed the cap"""
        prefs = NotificationPreferences(user_id="user-1", max_daily_notifications=5)
        results = []

        def worker():
            results.append(self.decide(prefs=prefs).allowed)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 5)
        self.assertEqual(self.repo.get_throttle_count("user-1", "101", self.now.date()), 5)


class TestRateLimit(ThrottleTestCase):
    """Tests for one-per-minute rate limiting and the burst allowance"""

    def test_second_send_within_minute_is_limited(self):
        self.assertTrue(self.decide().allowed)
        self.advance(30)

        decision = self.decide()

        self.assertEqual(decision.reason, BlockReason.RATE_LIMITED)
        self.assertEqual(decision.retry_after, self.now + timedelta(minutes=5))

    def test_send_after_a_minute_is_allowed(self):
        self.assertTrue(self.decide().allowed)
        self.advance(60)

        self.assertTrue(self.decide().allowed)

    def test_burst_allows_thirty_rapid_sends(self):
        """Sends less than 5s apart form a burst of up to 30 extra sends"""
        allowed = []
        for _ in range(32):
            allowed.append(self.decide().allowed)
            self.advance(1)

        self.assertEqual(allowed[:31], [True] * 31)
        self.assertFalse(allowed[31])

    def test_rate_limit_is_per_search(self):
        self.assertTrue(self.decide(search_id="101").allowed)
        self.advance(30)

        self.assertTrue(self.decide(search_id="102").allowed)

    def test_reset_clears_counts_and_rate_limit(self):
        self.assertTrue(self.decide().allowed)
        self.advance(30)

        with patch("builtins.print"):
            reset = self.throttle.reset_daily_counts(user_id="user-1")

        self.assertEqual(reset, 1)
        self.assertEqual(self.repo.get_throttle_count("user-1", "101", self.now.date()), 0)
        self.assertTrue(self.decide().allowed)


class TestBulkImport(ThrottleTestCase):
    """Tests for bulk-import backpressure"""

    def test_detector_threshold(self):
        detector = BulkImportDetector()
        for _ in range(90):
            detector.register(self.now)
        self.assertFalse(detector.is_active(self.now))

        with patch("builtins.print"):
            self.assertTrue(detector.register(self.now))

    def test_detector_window_rolls(self):
        detector = BulkImportDetector()
        for _ in range(90):
            detector.register(self.now)

        later = self.now + timedelta(seconds=61)
        self.assertFalse(detector.register(later))
        self.assertEqual(detector.recent_count(later), 1)

    def test_batch_mode_expires(self):
        detector = BulkImportDetector()
        with patch("builtins.print"):
            for _ in range(91):
                detector.register(self.now)

        self.assertTrue(detector.is_active(self.now + timedelta(minutes=4)))
        self.assertFalse(detector.is_active(self.now + timedelta(minutes=5)))

    def test_ninety_five_events_in_a_minute(self):
        """Events 92-95 are deferred 30 minutes once batch mode starts after event 91"""
        decisions = []
        with patch("builtins.print"):
            for i in range(1, 96):
                decisions.append(self.decide(user_id=f"user-{i}", search_id=str(i)))
                self.throttle.register_import_event()

        self.assertTrue(all(d.allowed for d in decisions[:91]))
        for decision in decisions[91:]:
            self.assertEqual(decision.reason, BlockReason.BULK_IMPORT)
            self.assertEqual(decision.retry_after, self.now + timedelta(minutes=30))
        self.assertTrue(self.throttle.is_bulk_import_active())

    def test_bulk_throttle_disabled(self):
        self.throttle.settings = NotificationSettings(bulk_import_throttle_enabled=False)
        with patch("builtins.print"):
            for _ in range(91):
                self.throttle.register_import_event()

        self.assertTrue(self.decide().allowed)


class TestSharedThrottleState(ThrottleTestCase):
    """Two managers over one store behave like one (event process and queue job)"""

    def second_manager(self) -> ThrottleManager:
        return ThrottleManager(self.repo, self.settings, clock=lambda: self.now)

    def test_recent_send_limits_other_manager(self):
        self.assertTrue(self.decide().allowed)
        self.advance(20)

        decision = self.second_manager().decide("user-1", "101", "new_listing", {}, self.prefs)

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, BlockReason.RATE_LIMITED)

    def test_burst_count_shared(self):
        other = self.second_manager()
        allowed = []
        for i in range(32):
            manager = self.throttle if i % 2 == 0 else other
            allowed.append(manager.decide("user-1", "101", "new_listing", {}, self.prefs).allowed)
            self.advance(1)

        self.assertEqual(allowed[:31], [True] * 31)
        self.assertFalse(allowed[31])

    def test_batch_mode_seen_by_other_manager(self):
        with patch("builtins.print"):
            for _ in range(91):
                self.throttle.register_import_event()

        other = self.second_manager()
        decision = other.decide("user-2", "201", "new_listing", {}, self.prefs)

        self.assertEqual(decision.reason, BlockReason.BULK_IMPORT)
        self.assertTrue(other.is_bulk_import_active())

    def test_send_before_midnight_limits_send_after(self):
        prefs = NotificationPreferences(user_id="user-1", quiet_hours_enabled=False)
        self.now = local(2026, 3, 10, 23, 59, 40)
        self.assertTrue(self.decide(prefs=prefs).allowed)

        self.now = local(2026, 3, 11, 0, 0, 10)
        decision = self.second_manager().decide("user-1", "101", "new_listing", {}, prefs)

        self.assertEqual(decision.reason, BlockReason.RATE_LIMITED)

    @patch("notifications.throttle_manager.log_notification_error")
    def test_bulk_state_write_failure_keeps_local_batch_mode(self, mock_log):
        store = Mock()
        store.get_bulk_import_until.return_value = None
        store.set_bulk_import_until.side_effect = RuntimeError("db down")
        detector = BulkImportDetector(store=store)

        with patch("builtins.print"):
            for _ in range(91):
                detector.register(self.now)

        self.assertTrue(detector.is_active(self.now))
        self.assertEqual(mock_log.call_args.kwargs["error_type"], "throttle")

    @patch("notifications.throttle_manager.log_notification_error")
    def test_bulk_state_read_failure_is_inactive(self, mock_log):
        store = Mock()
        store.get_bulk_import_until.side_effect = RuntimeError("db down")

        self.assertFalse(BulkImportDetector(store=store).is_active(self.now))
        mock_log.assert_called_once()


class TestThrottleSwitches(ThrottleTestCase):
    """Tests for global and per-user throttling switches"""

    def test_global_throttling_off_still_counts(self):
        self.throttle.settings = NotificationSettings(global_throttling_enabled=False)
        self.now = local(2026, 3, 10, 23, 30)

        self.assertTrue(self.decide().allowed)
        self.assertTrue(self.decide().allowed)
        self.assertEqual(self.repo.get_throttle_count("user-1", "101", self.now.date()), 2)

    def test_user_throttling_off(self):
        prefs = NotificationPreferences(
            user_id="user-1", throttling_enabled=False, max_daily_notifications=0
        )

        self.assertTrue(self.decide(prefs=prefs).allowed)

    @patch("notifications.throttle_manager.log_notification_error")
    def test_throttled_count_failure_keeps_decision(self, mock_log):
        repo = Mock()
        repo.increment_throttled_count.side_effect = RuntimeError("db down")
        throttle = ThrottleManager(repo, self.settings, clock=lambda: local(2026, 3, 10, 23, 30))

        decision = throttle.decide("user-1", "101", "new_listing", {}, self.prefs)

        self.assertEqual(decision.reason, BlockReason.QUIET_HOURS)
        mock_log.assert_called_once()


class TestThrottleStatistics(ThrottleTestCase):
    """Tests for get_statistics()"""

    def test_totals_across_users(self):
        self.decide(user_id="user-1", search_id="101")
        self.decide(user_id="user-2", search_id="201")
        self.advance(2)
        self.decide(user_id="user-2", search_id="201")

        stats = self.throttle.get_statistics()

        self.assertEqual(stats["date"], "2026-03-10")
        self.assertEqual(stats["total_users"], 2)
        self.assertEqual(stats["total_sent"], 3)
        self.assertEqual(stats["total_throttled"], 0)
        self.assertFalse(stats["bulk_import_active"])

    def test_single_user(self):
        self.decide(user_id="user-1", search_id="101")

        stats = self.throttle.get_statistics("user-1")

        self.assertEqual(len(stats["searches"]), 1)
        self.assertEqual(stats["searches"][0]["notification_count"], 1)


if __name__ == "__main__":
    unittest.main()
