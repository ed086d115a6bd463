from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_marketplace.db.base import Base
from rental_marketplace.models.statuses import InvoiceStatus, OrderStatus, PricingUnit, ReservationStatus


def _status_enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=20, validate_strings=True)


class Product(Base):
    __tablename__ = "products"

    ProductID = Column("id", Integer, primary_key=True)
    VendorID = Column("vendor_id", Integer, nullable=False, index=True)
    Name = Column("name", String(255), nullable=False)
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Variants = relationship("Variant", back_populates="Product")


class Variant(Base):
    __tablename__ = "variants"
    __table_args__ = (CheckConstraint("stock_quantity >= 0", name="ck_variant_stock_non_negative"),)

    VariantID = Column("id", Integer, primary_key=True)
    ProductID = Column("product_id", Integer, ForeignKey("products.id"), nullable=False, index=True)
    Sku = Column("sku", String(100))
    StockQuantity = Column("stock_quantity", Integer, nullable=False, default=0)
    PriceHourly = Column("price_hourly", Numeric(12, 2))
    PriceDaily = Column("price_daily", Numeric(12, 2))
    PriceWeekly = Column("price_weekly", Numeric(12, 2))
    PriceMonthly = Column("price_monthly", Numeric(12, 2))
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Product = relationship("Product", back_populates="Variants")
    Reservations = relationship("Reservation", back_populates="Variant")


class Order(Base):
    __tablename__ = "orders"

    OrderID = Column("id", Integer, primary_key=True)
    OrderNumber = Column("order_number", String(50), nullable=False, unique=True)
    CustomerID = Column("customer_id", Integer, nullable=False, index=True)
    VendorID = Column("vendor_id", Integer, nullable=False, index=True)
    Subtotal = Column("subtotal", Numeric(12, 2), nullable=False, default=0)
    TaxAmount = Column("tax_amount", Numeric(12, 2), nullable=False, default=0)
    TotalAmount = Column("total_amount", Numeric(12, 2), nullable=False, default=0)
    LateFeeAmount = Column("late_fee_amount", Numeric(12, 2), nullable=False, default=0)
    StartDate = Column("start_date", DateTime, nullable=False)
    EndDate = Column("end_date", DateTime, nullable=False)
    Status = Column("status", _status_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    VendorJurisdiction = Column("vendor_jurisdiction", String(100))
    CustomerJurisdiction = Column("customer_jurisdiction", String(100))
    BillingAddress = Column("billing_address", String(1000))
    ShippingAddress = Column("shipping_address", String(1000))
    CustomerNotes = Column("customer_notes", String(1000))
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Reservations = relationship(
        "Reservation",
        back_populates="Order",
        order_by="Reservation.ReservationID",
    )
    Pickups = relationship("Pickup", back_populates="Order", order_by="Pickup.PickupID")
    Returns = relationship("RentalReturn", back_populates="Order", order_by="RentalReturn.ReturnID")
    Invoice = relationship("Invoice", back_populates="Order", uselist=False)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        CheckConstraint("end_date > start_date", name="ck_reservation_interval"),
    )

    ReservationID = Column("id", Integer, primary_key=True)
    OrderID = Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True)
    VariantID = Column("variant_id", Integer, ForeignKey("variants.id"), nullable=False, index=True)
    StartDate = Column("start_date", DateTime, nullable=False)
    EndDate = Column("end_date", DateTime, nullable=False)
    Quantity = Column("quantity", Integer, nullable=False)
    Status = Column("status", _status_enum(ReservationStatus), nullable=False, default=ReservationStatus.RESERVED, index=True)
    Unit = Column("unit", _status_enum(PricingUnit))
    Periods = Column("periods", Integer)
    PricePerUnit = Column("price_per_unit", Numeric(12, 2))
    LineTotal = Column("line_total", Numeric(12, 2))
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Order = relationship("Order", back_populates="Reservations")
    Variant = relationship("Variant", back_populates="Reservations")


class Pickup(Base):
    __tablename__ = "pickups"

    PickupID = Column("id", Integer, primary_key=True)
    OrderID = Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True)
    ReservationID = Column("reservation_id", Integer, ForeignKey("reservations.id"), nullable=False, unique=True)
    PickedUpBy = Column("picked_up_by", String(255), nullable=False)
    Notes = Column("notes", String(1000))
    PickedUpAt = Column("picked_up_at", DateTime, nullable=False)
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Order = relationship("Order", back_populates="Pickups")
    Reservation = relationship("Reservation")


class RentalReturn(Base):
    __tablename__ = "returns"

    ReturnID = Column("id", Integer, primary_key=True)
    OrderID = Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, index=True)
    ReservationID = Column("reservation_id", Integer, ForeignKey("reservations.id"), nullable=False, unique=True)
    PickupID = Column("pickup_id", Integer, ForeignKey("pickups.id"))
    ReturnedAt = Column("returned_at", DateTime, nullable=False)
    IsLate = Column("is_late", Boolean, nullable=False, default=False)
    LateFee = Column("late_fee", Numeric(12, 2), nullable=False, default=0)
    ConditionNotes = Column("condition_notes", String(1000))
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Order = relationship("Order", back_populates="Returns")
    Reservation = relationship("Reservation")
    Pickup = relationship("Pickup")


class Invoice(Base):
    __tablename__ = "invoices"

    InvoiceID = Column("id", Integer, primary_key=True)
    OrderID = Column("order_id", Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    InvoiceNumber = Column("invoice_number", String(50), nullable=False, unique=True)
    Status = Column("status", _status_enum(InvoiceStatus), nullable=False, default=InvoiceStatus.UNPAID)
    LineItems = Column("line_items", JSON, nullable=False, default=list)
    Subtotal = Column("subtotal", Numeric(12, 2), nullable=False, default=0)
    Cgst = Column("cgst", Numeric(12, 2), nullable=False, default=0)
    Sgst = Column("sgst", Numeric(12, 2), nullable=False, default=0)
    Igst = Column("igst", Numeric(12, 2), nullable=False, default=0)
    TotalTax = Column("total_tax", Numeric(12, 2), nullable=False, default=0)
    TotalAmount = Column("total_amount", Numeric(12, 2), nullable=False, default=0)
    AmountPaid = Column("amount_paid", Numeric(12, 2), nullable=False, default=0)
    AmountDue = Column("amount_due", Numeric(12, 2), nullable=False, default=0)
    DueDate = Column("due_date", Date)
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Order = relationship("Order", back_populates="Invoice")
    Payments = relationship("Payment", back_populates="Invoice", order_by="Payment.PaymentID")


class Payment(Base):
    __tablename__ = "payments"

    PaymentID = Column("id", Integer, primary_key=True)
    InvoiceID = Column("invoice_id", Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    OrderID = Column("order_id", Integer, ForeignKey("orders.id"), nullable=False)
    Amount = Column("amount", Numeric(12, 2), nullable=False)
    PaymentMethod = Column("payment_method", String(50))
    TransactionID = Column("transaction_id", String(100))
    Status = Column("status", String(20), nullable=False, default="SUCCESS")
    PaidAt = Column("paid_at", DateTime)
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    Invoice = relationship("Invoice", back_populates="Payments")


class Notification(Base):
    __tablename__ = "notifications"

    NotificationID = Column("id", Integer, primary_key=True)
    UserID = Column("user_id", Integer, nullable=False, index=True)
    NotificationType = Column("type", String(20), nullable=False, default="INFO")
    Title = Column("title", String(255), nullable=False)
    Message = Column("message", String(2000), nullable=False)
    Link = Column("link", String(500))
    IsRead = Column("is_read", Boolean, nullable=False, default=False)
    ReadAt = Column("read_at", DateTime)
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())


class SystemSetting(Base):
    __tablename__ = "system_settings"

    SettingKey = Column("setting_key", String(100), primary_key=True)
    SettingValue = Column("setting_value", String(2000))
    DataType = Column("data_type", String(20), nullable=False, default="STRING")
    CreatedAt = Column("created_at", DateTime, server_default=func.now())
    UpdatedAt = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())
