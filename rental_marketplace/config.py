from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_marketplace.models.rental_models import SystemSetting

SETTINGS_LOGGER = logging.getLogger("rental_marketplace.settings")

DEFAULT_CORS_ORIGINS = "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    database_url: str
    gst_rate: Decimal = Decimal("0.18")
    late_fee_rate: Decimal = Decimal("0.20")
    invoice_due_days: int = 7
    min_rental_days: Optional[int] = None
    max_rental_days: Optional[int] = 365
    reminder_days_ahead: int = 2
    currency: str = "INR"
    cors_allow_origins: list[str] = []
    cors_allow_credentials: bool = True


def _require_env(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _parse_csv(raw: str | None) -> list[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


def _parse_optional_int(raw: str | None) -> int | None:
    value = (raw or "").strip()
    if not value or value.lower() in {"none", "null", "off"}:
        return None
    return int(value)


def load_settings_from_env(env: Mapping[str, str] | None = None, *, use_dotenv: bool = True) -> Settings:
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    values: dict[str, Any] = {"database_url": _require_env(env, "RENTAL_DB_URL")}
    if env.get("RENTAL_GST_RATE"):
        values["gst_rate"] = Decimal(env["RENTAL_GST_RATE"].strip())
    if env.get("RENTAL_LATE_FEE_RATE"):
        values["late_fee_rate"] = Decimal(env["RENTAL_LATE_FEE_RATE"].strip())
    if env.get("RENTAL_INVOICE_DUE_DAYS"):
        values["invoice_due_days"] = int(env["RENTAL_INVOICE_DUE_DAYS"])
    if "RENTAL_MIN_RENTAL_DAYS" in env:
        values["min_rental_days"] = _parse_optional_int(env.get("RENTAL_MIN_RENTAL_DAYS"))
    if "RENTAL_MAX_RENTAL_DAYS" in env:
        values["max_rental_days"] = _parse_optional_int(env.get("RENTAL_MAX_RENTAL_DAYS"))
    if env.get("RENTAL_REMINDER_DAYS_AHEAD"):
        values["reminder_days_ahead"] = int(env["RENTAL_REMINDER_DAYS_AHEAD"])
    if env.get("RENTAL_CURRENCY"):
        values["currency"] = env["RENTAL_CURRENCY"].strip().upper()

    origins = _parse_csv(env.get("CORS_ALLOW_ORIGINS", DEFAULT_CORS_ORIGINS))
    allow_credentials = str(env.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
    if "*" in origins:
        # Browsers reject wildcard origins with credentials.
        allow_credentials = False
    values["cors_allow_origins"] = origins
    values["cors_allow_credentials"] = allow_credentials
    return Settings(**values)


def parse_setting_value(value: str | None, data_type: str | None) -> Any:
    if value is None:
        return None
    kind = (data_type or "STRING").strip().upper()
    if kind == "NUMBER":
        try:
            return Decimal(str(value).strip())
        except ArithmeticError:
            return Decimal("0")
    if kind == "BOOLEAN":
        return str(value).strip().lower() in {"true", "1"}
    if kind == "JSON":
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return None
    return str(value)


OPTIONAL_INT_KEYS = ("min_rental_days", "max_rental_days")
REQUIRED_INT_KEYS = ("invoice_due_days", "reminder_days_ahead")


def _to_decimal(raw: Any) -> Decimal:
    value = Decimal(str(raw).strip())
    if not value.is_finite():
        raise ValueError(f"not a finite number: {raw!r}")
    return value


def _to_int(raw: Any) -> int:
    value = _to_decimal(raw)
    if value != value.to_integral_value():
        raise ValueError(f"not a whole number: {raw!r}")
    return int(value)


def _to_optional_int(raw: Any) -> int | None:
    if raw in (None, ""):
        return None
    return _to_int(raw)


def _overrides_from_rows(rows: Mapping[str, Any]) -> dict[str, Any]:
    """Typed overrides from parsed setting rows; a malformed row is logged and skipped."""
    converters: list[tuple[str, str, Callable[[Any], Any]]] = []
    if rows.get("gst_rate") is not None:
        converters.append(("gst_rate", "gst_rate", _to_decimal))
    if rows.get("late_fee_rate") is not None:
        converters.append(("late_fee_rate", "late_fee_rate", _to_decimal))
    elif rows.get("late_fee_percentage") is not None:
        converters.append(("late_fee_percentage", "late_fee_rate", lambda raw: _to_decimal(raw) / Decimal("100")))
    for key in REQUIRED_INT_KEYS:
        if rows.get(key) not in (None, ""):
            converters.append((key, key, _to_int))
    for key in OPTIONAL_INT_KEYS:
        if key in rows:
            converters.append((key, key, _to_optional_int))
    if rows.get("currency"):
        converters.append(("currency", "currency", lambda raw: str(raw).strip().upper()))

    overrides: dict[str, Any] = {}
    for row_key, field, convert in converters:
        try:
            overrides[field] = convert(rows[row_key])
        except (ValueError, ArithmeticError):
            SETTINGS_LOGGER.warning("Ignoring malformed system setting %s=%r", row_key, rows[row_key])
    return overrides


class SettingsProvider:
    """Holds the active Settings and rebuilds them on demand.

    The environment supplies the base values; rows in ``system_settings``
    override the business knobs (rates, limits, currency) when a session
    factory is attached.
    """

    def __init__(self, base: Settings, session_factory: Callable[[], Session] | None = None) -> None:
        self._base = base
        self._session_factory = session_factory
        self._current = base
        self._lock = threading.Lock()
        self._loaded = False

    @property
    def base(self) -> Settings:
        return self._base

    @property
    def current(self) -> Settings:
        if not self._loaded:
            return self.load()
        return self._current

    def attach(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def load(self) -> Settings:
        with self._lock:
            self._current = self._build()
            self._loaded = True
            return self._current

    def reload(self) -> Settings:
        settings = self.load()
        SETTINGS_LOGGER.info(
            "Settings reloaded gst_rate=%s late_fee_rate=%s currency=%s",
            settings.gst_rate,
            settings.late_fee_rate,
            settings.currency,
        )
        return settings

    def _build(self) -> Settings:
        if self._session_factory is None:
            return self._base
        db = self._session_factory()
        try:
            rows = db.execute(select(SystemSetting)).scalars().all()
            parsed = {row.SettingKey: parse_setting_value(row.SettingValue, row.DataType) for row in rows}
        finally:
            db.close()
        overrides = _overrides_from_rows(parsed)
        if not overrides:
            return self._base
        SETTINGS_LOGGER.info("Applied %s setting override(s) from system_settings", len(overrides))
        return self._base.model_copy(update=overrides)
