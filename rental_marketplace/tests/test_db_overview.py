import unittest

from rental_marketplace.models.rental_models import Reservation
from rental_marketplace.models.statuses import OrderStatus, ReservationStatus
from rental_marketplace.scripts import db_overview

from rental_support import DatabaseTestCase, at


class DbOverviewTests(DatabaseTestCase):
    def checks(self):
        return {row.name: row for row in db_overview.run_integrity_checks(self.engine)}

    def test_schema_matches_models(self):
        results = db_overview.run_schema_checks(self.engine)
        self.assertTrue(all(row.ok for row in results), [row for row in results if not row.ok])

    def test_clean_database_passes(self):
        variant = self.add_variant(stock=2)
        order = self.add_order()
        self.db.add(Reservation(OrderID=order.OrderID, VariantID=variant.VariantID, StartDate=at(1), EndDate=at(3), Quantity=2))
        self.db.commit()
        self.assertTrue(all(row.ok for row in self.checks().values()))

    def test_detects_overbooking_and_stranded_reservations(self):
        variant = self.add_variant(stock=1)
        first = self.add_order()
        second = self.add_order()
        self.db.add_all(
            [
                Reservation(OrderID=first.OrderID, VariantID=variant.VariantID, StartDate=at(1), EndDate=at(4), Quantity=1),
                Reservation(OrderID=second.OrderID, VariantID=variant.VariantID, StartDate=at(2), EndDate=at(5), Quantity=1),
            ]
        )
        second.Status = OrderStatus.CANCELLED
        self.db.commit()

        checks = self.checks()
        self.assertFalse(checks["reservations:stock_invariant"].ok)
        self.assertIn(str(variant.VariantID), checks["reservations:stock_invariant"].detail)
        self.assertFalse(checks["reservations:held_by_cancelled_order"].ok)
        self.assertTrue(checks["reservations:open_on_returned_order"].ok)

    def test_confirmed_order_without_invoice_is_flagged(self):
        order = self.add_order()
        order.Status = OrderStatus.CONFIRMED
        self.db.commit()
        check = self.checks()["invoices:missing_for_confirmed_order"]
        self.assertFalse(check.ok)
        self.assertEqual(check.detail, "count=1")

    def test_cancelled_reservations_are_ignored(self):
        variant = self.add_variant(stock=1)
        order = self.add_order()
        self.db.add_all(
            [
                Reservation(
                    OrderID=order.OrderID,
                    VariantID=variant.VariantID,
                    StartDate=at(1),
                    EndDate=at(4),
                    Quantity=1,
                    Status=ReservationStatus.CANCELLED,
                ),
                Reservation(OrderID=order.OrderID, VariantID=variant.VariantID, StartDate=at(2), EndDate=at(5), Quantity=1),
            ]
        )
        self.db.commit()
        self.assertTrue(self.checks()["reservations:stock_invariant"].ok)

    def test_main_requires_a_url(self):
        self.assertEqual(db_overview.main(["--db-url", ""]), 2)


if __name__ == "__main__":
    unittest.main()
