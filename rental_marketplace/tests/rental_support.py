import itertools
import os
import tempfile
import unittest
from datetime import datetime
from decimal import Decimal

from rental_marketplace.config import Settings
from rental_marketplace.db.session import build_engine, build_session_factory, init_db
from rental_marketplace.models.rental_models import Order, Product, Variant
from rental_marketplace.models.statuses import ActorRole, OrderStatus
from rental_marketplace.services.access_service import Actor

VENDOR_ID = 10
OTHER_VENDOR_ID = 11
CUSTOMER_ID = 501
OTHER_CUSTOMER_ID = 502
ADMIN_ID = 1

VENDOR = Actor(VENDOR_ID, ActorRole.VENDOR)
OTHER_VENDOR = Actor(OTHER_VENDOR_ID, ActorRole.VENDOR)
CUSTOMER = Actor(CUSTOMER_ID, ActorRole.CUSTOMER)
OTHER_CUSTOMER = Actor(OTHER_CUSTOMER_ID, ActorRole.CUSTOMER)
ADMIN = Actor(ADMIN_ID, ActorRole.ADMIN)

_numbers = itertools.count(1)


def at(day: int, hour: int = 0, month: int = 2) -> datetime:
    return datetime(2026, month, day, hour, 0)


def temp_database_url() -> tuple[str, str]:
    handle, path = tempfile.mkstemp(prefix="rental-", suffix=".sqlite3")
    os.close(handle)
    return f"sqlite+pysqlite:///{path}", path


def remove_database(path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.remove(path + suffix)


class DatabaseTestCase(unittest.TestCase):
    """Fresh SQLite file per test; the file is needed for cross-thread writers."""

    def setUp(self):
        self.database_url, self.db_path = temp_database_url()
        self.engine = build_engine(self.database_url)
        init_db(self.engine)
        self.session_factory = build_session_factory(self.engine)
        self.db = self.session_factory()
        self.settings = Settings(database_url=self.database_url)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        remove_database(self.db_path)

    def add_variant(
        self,
        stock=5,
        vendor_id=VENDOR_ID,
        name="Camera",
        hourly=None,
        daily=Decimal("300.00"),
        weekly=None,
        monthly=None,
    ) -> Variant:
        product = Product(VendorID=vendor_id, Name=name)
        variant = Variant(
            Product=product,
            Sku=f"SKU-{next(_numbers)}",
            StockQuantity=stock,
            PriceHourly=hourly,
            PriceDaily=daily,
            PriceWeekly=weekly,
            PriceMonthly=monthly,
        )
        self.db.add_all([product, variant])
        self.db.commit()
        return variant

    def add_order(self, customer_id=CUSTOMER_ID, vendor_id=VENDOR_ID) -> Order:
        order = Order(
            OrderNumber=f"ORD-TEST-{next(_numbers):05d}",
            CustomerID=customer_id,
            VendorID=vendor_id,
            StartDate=at(1),
            EndDate=at(2),
            Status=OrderStatus.PENDING,
        )
        self.db.add(order)
        self.db.commit()
        return order

    def order_payload(self, *items, **extra) -> dict:
        payload = {
            "vendor_jurisdiction": "Maharashtra",
            "customer_jurisdiction": "Karnataka",
            "items": [
                {
                    "variant_id": variant.VariantID,
                    "quantity": quantity,
                    "start_date": start,
                    "end_date": end,
                }
                for variant, quantity, start, end in items
            ],
        }
        payload.update(extra)
        return payload
