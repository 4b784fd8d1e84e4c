from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from shopreq.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models.requests import REQUEST_TYPES, UNITS


# Maximum unit price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
# Numeric(10, 2)
MAX_QUANTITY = Decimal("99999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate email)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


REQUEST_POLICY = ModelValidationPolicy(
    writable_fields={
        "request_type",
        "justification",
        "delivery_date",
        "preferred_supplier",
        "client_name",
        "client_id",
    },
    required_on_create={"request_type"},
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "item_code",
        "description",
        "quantity",
        "unit",
        "unit_price_cents",
        "supplier",
        "notes",
    },
    required_on_create={"item_code", "description", "quantity", "unit"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (quantities). Floats go through str() to avoid binary noise.
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        scale = coltype.scale if coltype.scale is not None else 2
        if coltype.precision is not None and abs(number) >= Decimal(10) ** (coltype.precision - scale):
            raise ValidationError(f"{col.key} is too large")
        try:
            quantized = number.quantize(Decimal(1).scaleb(-scale))
        except InvalidOperation:
            raise ValidationError(f"{col.key} is too large")
        if number != quantized:
            raise ValidationError(f"{col.key} allows at most {scale} decimal places")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                return parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Optional text fields: blank means "not provided"
        if isinstance(col.type, (String, Text)) and col.nullable and val == "":
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_request(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "request_type" in patch:
        request_type = (patch["request_type"] or "").lower()
        if request_type not in REQUEST_TYPES:
            raise ValidationError(f"request_type must be one of: {', '.join(REQUEST_TYPES)}")
        patch["request_type"] = request_type


def enforce_rules_item(patch: dict) -> None:
    quantity = patch.get("quantity")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    if patch.get("unit") not in UNITS:
        raise ValidationError(f"unit must be one of: {', '.join(UNITS)}")

    if "unit_price_cents" in patch and patch["unit_price_cents"] is not None:
        price = patch["unit_price_cents"]
        if price < 0:
            raise ValidationError("unit_price_cents must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")
