import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rental_marketplace.config import Settings, SettingsProvider, load_settings_from_env
from rental_marketplace.db.deps import get_db, get_read_db
from rental_marketplace.db.session import build_engine, build_read_session_factory, build_session_factory, init_db
from rental_marketplace.errors import ForbiddenError, NotFoundError, RentalError
from rental_marketplace.models.rental_models import Variant
from rental_marketplace.models.statuses import ActorRole
from rental_marketplace.schemas.handover import PickupRequest, ReturnRequest
from rental_marketplace.schemas.orders import CreateOrderDto, OrderDetailsUpdate, PaymentRequest
from rental_marketplace.schemas.pricing import LateFeeRequest, PriceCalculationRequest, QuotationRequest
from rental_marketplace.services import (
    invoice_service,
    notification_service,
    order_service,
    pickup_service,
    reservation_service,
    return_service,
)
from rental_marketplace.services.access_service import Actor, build_actor, require_participant
from rental_marketplace.services.pricing_service import calculate_item_price, generate_quotation

API_LOGGER = logging.getLogger("rental_marketplace.api")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings_provider.current


def get_actor(
    x_actor_id: str | None = Header(None, alias="X-Actor-ID"),
    x_actor_role: str | None = Header(None, alias="X-Actor-Role"),
) -> Actor:
    # Identity is established by the gateway in front of this service.
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity.")
    return build_actor(x_actor_id, x_actor_role)


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("Admin access required", user_id=actor.user_id, role=actor.role.value)


def _load_variant(db: Session, variant_id: int) -> Variant:
    variant = db.execute(
        select(Variant).options(selectinload(Variant.Product)).where(Variant.VariantID == variant_id)
    ).scalars().first()
    if not variant:
        raise NotFoundError(f"Variant {variant_id} not found", variant_id=variant_id)
    return variant


def _serialize_pricing(pricing: dict) -> dict:
    return {**pricing, "unit": pricing["unit"].value}


def create_app(settings_provider: SettingsProvider | None = None) -> FastAPI:
    if settings_provider is None:
        settings_provider = SettingsProvider(load_settings_from_env())
    base = settings_provider.base

    engine = build_engine(base.database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)
    settings_provider.attach(session_factory)
    settings_provider.load()

    app = FastAPI(title="Rental Marketplace")
    app.state.settings_provider = settings_provider
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.read_session_factory = build_read_session_factory(engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=base.cors_allow_origins,
        allow_credentials=base.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RentalError)
    async def handle_rental_error(request: Request, exc: RentalError):
        if exc.status_code >= 500:
            API_LOGGER.error("%s %s failed: %s context=%s", request.method, request.url.path, exc.message, exc.context)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))

    @app.get("/healthz")
    def healthcheck():
        return {"status": "ok"}

    @app.get("/api/healthz")
    def healthcheck_api(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc
        return {"status": "ok", "database": "ok"}

    @app.post("/api/pricing/calculate")
    def calculate_price(payload: PriceCalculationRequest, db: Session = Depends(get_db)):
        variant = _load_variant(db, payload.variant_id)
        pricing = calculate_item_price(variant, payload.start_date, payload.end_date, payload.quantity)
        return {"variant_id": variant.VariantID, **_serialize_pricing(pricing)}

    @app.post("/api/quotations")
    def create_quotation(
        payload: QuotationRequest,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ):
        items = [
            {
                "variant": _load_variant(db, item.variant_id),
                "start_date": item.start_date,
                "end_date": item.end_date,
                "quantity": item.quantity,
            }
            for item in payload.items
        ]
        quotation = generate_quotation(
            items,
            payload.vendor_jurisdiction,
            payload.customer_jurisdiction,
            settings.gst_rate,
        )
        quotation["line_items"] = [_serialize_pricing(line) for line in quotation["line_items"]]
        quotation["currency"] = settings.currency
        return quotation

    @app.get("/api/variants/{variant_id}/availability")
    def get_availability(
        variant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
        db: Session = Depends(get_read_db),
    ):
        return reservation_service.check_availability(db, variant_id, start_date, end_date)

    @app.post("/api/late-fees/calculate")
    def calculate_late_fee(payload: LateFeeRequest, settings: Settings = Depends(get_settings)):
        rate = payload.rate if payload.rate is not None else settings.late_fee_rate
        return return_service.calculate_late_fee(payload.end_date, payload.returned_at, payload.base_price, rate)

    @app.post("/api/orders", status_code=201)
    def create_order(
        payload: CreateOrderDto,
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
        settings: Settings = Depends(get_settings),
    ):
        if actor.role != ActorRole.CUSTOMER:
            raise ForbiddenError("Only customers can place orders", user_id=actor.user_id, role=actor.role.value)
        order = order_service.create_order(db, actor.user_id, payload, settings)
        return order_service.serialize_order(order)

    @app.get("/api/orders")
    def list_orders(
        status: str | None = Query(None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
    ):
        return [order_service.serialize_order(order) for order in order_service.list_orders(db, actor, status)]

    @app.get("/api/orders/{order_id}")
    def get_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        order = order_service.get_order(db, order_id)
        require_participant(order, actor, "view")
        return order_service.serialize_order(order)

    @app.patch("/api/orders/{order_id}")
    def update_order(
        order_id: int,
        payload: OrderDetailsUpdate,
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
    ):
        order = order_service.update_order_details(db, order_id, actor, payload)
        return order_service.serialize_order(order)

    @app.post("/api/orders/{order_id}/confirm")
    def confirm_order(
        order_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
        settings: Settings = Depends(get_settings),
    ):
        order = order_service.confirm_order(db, order_id, actor, settings)
        return order_service.serialize_order(order)

    @app.post("/api/orders/{order_id}/cancel")
    def cancel_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        order = order_service.cancel_order(db, order_id, actor)
        return order_service.serialize_order(order)

    @app.post("/api/orders/{order_id}/complete")
    def complete_order(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        order = order_service.complete_order(db, order_id, actor)
        return order_service.serialize_order(order)

    @app.get("/api/orders/{order_id}/invoice")
    def get_order_invoice(order_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        order = order_service.get_order(db, order_id)
        require_participant(order, actor, "view")
        invoice = invoice_service.get_invoice_for_order(db, order_id)
        if invoice is None:
            raise NotFoundError("Invoice not found", order_id=order_id)
        return invoice_service.serialize_invoice(invoice)

    @app.post("/api/invoices/{invoice_id}/payments")
    def record_payment(
        invoice_id: int,
        payload: PaymentRequest,
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
    ):
        try:
            invoice = invoice_service.get_invoice(db, invoice_id)
            require_participant(order_service.get_order(db, invoice.OrderID), actor, "pay for")
            invoice = invoice_service.record_payment(
                db,
                invoice_id,
                payload.amount,
                payload.payment_method,
                payload.transaction_id,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return invoice_service.serialize_invoice(invoice)

    @app.post("/api/pickups", status_code=201)
    def record_pickup(payload: PickupRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        result = pickup_service.record_pickup(db, actor.user_id, actor.role, payload)
        return {
            "order": order_service.serialize_order(result["order"]),
            "pickups": [pickup_service.serialize_pickup(pickup) for pickup in result["pickups"]],
        }

    @app.get("/api/pickups/pending")
    def pending_pickups(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        return [order_service.serialize_order(order) for order in pickup_service.list_pending_pickups(db, actor)]

    @app.post("/api/returns", status_code=201)
    def record_return(
        payload: ReturnRequest,
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
        settings: Settings = Depends(get_settings),
    ):
        result = return_service.record_return(db, actor.user_id, actor.role, payload, settings)
        return {
            "return": return_service.serialize_return(result["return"]),
            "order": order_service.serialize_order(result["order"]),
            "late_info": result["late_info"],
        }

    @app.get("/api/returns/pending")
    def pending_returns(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        return [
            {
                **order_service.serialize_order(entry["order"]),
                "is_overdue": entry["is_overdue"],
                "outstanding_reservation_ids": entry["outstanding_reservation_ids"],
            }
            for entry in return_service.list_pending_returns(db, actor)
        ]

    @app.get("/api/notifications")
    def list_notifications(
        unread_only: bool = Query(False, alias="unreadOnly"),
        limit: int = Query(50, ge=1, le=200),
        db: Session = Depends(get_db),
        actor: Actor = Depends(get_actor),
    ):
        rows = notification_service.list_notifications(db, actor.user_id, unread_only=unread_only, limit=limit)
        return {
            "unread": notification_service.unread_count(db, actor.user_id),
            "notifications": [notification_service.serialize_notification(row) for row in rows],
        }

    @app.post("/api/notifications/{notification_id}/read")
    def mark_notification_read(notification_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        notification = notification_service.mark_as_read(db, notification_id, actor.user_id)
        return notification_service.serialize_notification(notification)

    @app.post("/api/notifications/read-all")
    def mark_all_notifications_read(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
        return {"updated": notification_service.mark_all_as_read(db, actor.user_id)}

    @app.post("/api/admin/settings/reload")
    def reload_settings(request: Request, actor: Actor = Depends(get_actor)):
        _require_admin(actor)
        settings = request.app.state.settings_provider.reload()
        return {
            "gst_rate": settings.gst_rate,
            "late_fee_rate": settings.late_fee_rate,
            "invoice_due_days": settings.invoice_due_days,
            "min_rental_days": settings.min_rental_days,
            "max_rental_days": settings.max_rental_days,
            "reminder_days_ahead": settings.reminder_days_ahead,
            "currency": settings.currency,
        }

    return app


app = create_app()
