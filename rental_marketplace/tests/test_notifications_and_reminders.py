import unittest
from unittest import mock
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select

from rental_marketplace.errors import NotFoundError
from rental_marketplace.models.rental_models import Notification
from rental_marketplace.scripts import return_reminders
from rental_marketplace.services import notification_service, order_service, pickup_service, reminder_service

from rental_support import CUSTOMER_ID, OTHER_CUSTOMER_ID, VENDOR, DatabaseTestCase, at


class NotificationTests(DatabaseTestCase):
    def test_mark_all_as_read_is_idempotent(self):
        for title in ("One", "Two", "Three"):
            notification_service.notify(self.db, CUSTOMER_ID, "info", title, f"{title} happened")
        notification_service.notify(self.db, OTHER_CUSTOMER_ID, "INFO", "Other", "Not yours")

        self.assertEqual(notification_service.unread_count(self.db, CUSTOMER_ID), 3)
        self.assertEqual(notification_service.mark_all_as_read(self.db, CUSTOMER_ID), 3)
        self.assertEqual(notification_service.mark_all_as_read(self.db, CUSTOMER_ID), 0)
        self.assertEqual(notification_service.unread_count(self.db, CUSTOMER_ID), 0)
        self.assertEqual(notification_service.unread_count(self.db, OTHER_CUSTOMER_ID), 1)
        self.db.rollback()

    def test_mark_single_notification(self):
        created = notification_service.notify(self.db, CUSTOMER_ID, "SUCCESS", "Paid", "Thanks", "/invoices/1")
        self.assertEqual(created.NotificationType, "SUCCESS")

        read = notification_service.mark_as_read(self.db, created.NotificationID, CUSTOMER_ID)
        self.assertTrue(read.IsRead)
        self.assertIsNotNone(read.ReadAt)
        self.assertEqual(notification_service.list_notifications(self.db, CUSTOMER_ID, unread_only=True), [])
        self.db.rollback()

        with self.assertRaises(NotFoundError):
            notification_service.mark_as_read(self.db, created.NotificationID, OTHER_CUSTOMER_ID)

    def test_unknown_type_falls_back_to_info(self):
        created = notification_service.notify(self.db, CUSTOMER_ID, "SHOUTING", "Hi", "Hello")
        self.assertEqual(created.NotificationType, "INFO")


class ReturnReminderTests(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        variant = self.add_variant(daily=Decimal("100"))
        order = order_service.create_order(
            self.db,
            CUSTOMER_ID,
            self.order_payload((variant, 1, at(1, month=3), at(5, hour=10, month=3))),
        )
        order_service.confirm_order(self.db, order.OrderID, VENDOR)
        pickup_service.record_pickup(
            self.db,
            VENDOR.user_id,
            VENDOR.role,
            {"order_id": order.OrderID, "picked_up_by": "Ravi"},
        )
        self.order = order

    def reminders(self):
        rows = self.db.execute(
            select(Notification).where(Notification.UserID == CUSTOMER_ID).where(Notification.Title == "Return Reminder")
        ).scalars().all()
        self.db.rollback()
        return rows

    def test_finds_rentals_ending_in_window(self):
        due = reminder_service.find_due_returns(self.db, days_ahead=2, today=date(2026, 3, 3))
        self.assertEqual([entry["order_id"] for entry in due], [self.order.OrderID])
        self.assertEqual(due[0]["customer_id"], CUSTOMER_ID)
        self.assertEqual(reminder_service.find_due_returns(self.db, days_ahead=2, today=date(2026, 3, 2)), [])
        self.db.rollback()

    def test_default_day_follows_the_utc_calendar(self):
        with mock.patch.object(reminder_service, "utcnow", return_value=datetime(2026, 3, 3, 23, 0)):
            due = reminder_service.find_due_returns(self.db, days_ahead=2)
        self.assertEqual([entry["order_id"] for entry in due], [self.order.OrderID])
        self.db.rollback()

    def test_sends_one_reminder_per_order(self):
        sent = reminder_service.send_return_reminders(self.db, days_ahead=1, today=date(2026, 3, 4))
        self.assertEqual(sent, 1)
        [reminder] = self.reminders()
        self.assertIn("2026-03-05", reminder.Message)

    def test_dry_run_sends_nothing(self):
        self.assertEqual(reminder_service.send_return_reminders(self.db, today=date(2026, 3, 3), dry_run=True), 0)
        self.assertEqual(self.reminders(), [])

    def test_cli_entry_point(self):
        self.db.close()
        exit_code = return_reminders.main(["--db-url", self.database_url, "--date", "2026-03-03", "--days-ahead", "2"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(len(self.reminders()), 1)

    def test_cli_requires_a_database(self):
        with mock.patch.dict("os.environ", {"RENTAL_DB_URL": ""}):
            with mock.patch.object(return_reminders, "load_dotenv"):
                self.assertEqual(return_reminders.main([]), 2)


if __name__ == "__main__":
    unittest.main()
