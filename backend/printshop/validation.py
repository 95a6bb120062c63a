from __future__ import annotations
from datetime import date, datetime
from printshop.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_QTY_PER_UNIT = Decimal("999999999.999")
MAX_BPS = 10_000

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50


# =============================================================================
# MODEL-BACKED PAYLOADS (reference data created through the API)
# =============================================================================

@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValidationError(f"{key} must be a boolean")


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{key} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{key} must be a datetime")


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            d = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
        if d is None:
            raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
        return d
    raise ValidationError(f"{key} must be a date")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None
    if isinstance(coltype, Boolean):
        return _coerce_bool(col.key, value)
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)
    if isinstance(coltype, DateTime):
        return _coerce_datetime(col.key, value)
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is (JSON, Numeric)
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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

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

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


INVENTORY_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "category", "unit", "reorder_point", "reorder_qty",
        "supplier_name", "cost_per_unit_cents", "is_active",
    },
    required_on_create={"sku", "name", "category", "unit"},
)

CONSUMPTION_RULE_POLICY = ModelValidationPolicy(
    writable_fields={"service_id", "inventory_item_id", "qty_per_unit", "tier_filter"},
    required_on_create={"service_id", "inventory_item_id", "qty_per_unit"},
)


def enforce_rules_inventory_item(patch: dict) -> None:
    for key in ("reorder_point", "reorder_qty", "cost_per_unit_cents"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    if patch.get("cost_per_unit_cents") is not None and patch["cost_per_unit_cents"] > MAX_AMOUNT_CENTS:
        raise ValidationError(f"cost_per_unit_cents cannot exceed {MAX_AMOUNT_CENTS}")


def parse_quantity(value: Any, key: str) -> Decimal:
    """Positive finite decimal; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError(f"{key} must be a number")
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{key} must be a number", details={"field": key})
    if not parsed.is_finite():
        raise ValidationError(f"{key} must be finite", details={"field": key})
    if parsed <= 0:
        raise ValidationError(f"{key} must be > 0", details={"field": key})
    if parsed > MAX_QTY_PER_UNIT:
        raise ValidationError(f"{key} cannot exceed {MAX_QTY_PER_UNIT}", details={"field": key})
    return parsed


def enforce_rules_consumption_rule(patch: dict) -> None:
    qty = patch.get("qty_per_unit")
    if qty is not None:
        patch["qty_per_unit"] = str(parse_quantity(qty, "qty_per_unit"))
    tier_filter = patch.get("tier_filter")
    if tier_filter is not None:
        if not isinstance(tier_filter, list) or not all(
            isinstance(t, int) and not isinstance(t, bool) for t in tier_filter
        ):
            raise ValidationError("tier_filter must be a list of tier ids")


# =============================================================================
# REQUEST SCHEMAS (operation inputs that are not a single model row)
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """One request field: type, presence, and range / enum constraints."""
    kind: str  # int, bool, str, date, datetime, list, dict
    required: bool = False
    choices: tuple = ()
    min_value: int | None = None
    max_value: int | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class RequestSchema:
    fields: dict = field(default_factory=dict)


def _coerce_field(key: str, spec: FieldSpec, value: Any):
    if spec.kind == "int":
        value = _coerce_int(key, value)
        if spec.min_value is not None and value < spec.min_value:
            raise ValidationError(f"{key} must be >= {spec.min_value}")
        if spec.max_value is not None and value > spec.max_value:
            raise ValidationError(f"{key} must be <= {spec.max_value}")
        return value
    if spec.kind == "bool":
        return _coerce_bool(key, value)
    if spec.kind == "date":
        return _coerce_date(key, value)
    if spec.kind == "datetime":
        return _coerce_datetime(key, value)
    if spec.kind == "list":
        if not isinstance(value, list):
            raise ValidationError(f"{key} must be a list")
        return value
    if spec.kind == "dict":
        if not isinstance(value, dict):
            raise ValidationError(f"{key} must be an object")
        return value

    value = str(value).strip()
    if spec.required and not value:
        raise ValidationError(f"{key} cannot be blank")
    if spec.max_length and len(value) > spec.max_length:
        raise ValidationError(f"{key} exceeds max length {spec.max_length}")
    if spec.choices and value not in spec.choices:
        raise ValidationError(
            f"{key} must be one of: {', '.join(spec.choices)}",
            details={"field": key, "choices": list(spec.choices)},
        )
    return value


def validate_request(payload: Any, schema: RequestSchema) -> dict:
    """
    Validate a JSON body against a schema.

    Unknown keys are rejected, required keys must be present and non-null,
    values are coerced to their declared kind. Absent optional keys are
    omitted from the result so services keep their own defaults.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(k for k in payload if k not in schema.fields)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}", details={"unknown": unknown})

    missing = sorted(k for k, spec in schema.fields.items() if spec.required and payload.get(k) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

    cleaned = {}
    for key, raw in payload.items():
        if raw is None:
            cleaned[key] = None
            continue
        cleaned[key] = _coerce_field(key, schema.fields[key], raw)
    return cleaned


def parse_list_params(args, *, sortable: set[str], default_sort: str = "created_at") -> dict:
    """limit / offset / sort_by / sort_order from a query string."""
    limit = _coerce_int("limit", args.get("limit", DEFAULT_PAGE_SIZE))
    offset = _coerce_int("offset", args.get("offset", 0))
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must be >= 0")

    sort_by = args.get("sort_by", default_sort)
    if sort_by not in sortable:
        raise ValidationError(
            f"sort_by must be one of: {', '.join(sorted(sortable))}",
            details={"choices": sorted(sortable)},
        )
    sort_order = args.get("sort_order", "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be 'asc' or 'desc'")

    return {"limit": limit, "offset": offset, "sort_by": sort_by, "sort_order": sort_order}


def parse_optional_int(args, key: str) -> int | None:
    raw = args.get(key)
    if raw is None or raw == "":
        return None
    return _coerce_int(key, raw)


def parse_optional_bool(args, key: str) -> bool | None:
    raw = args.get(key)
    if raw is None or raw == "":
        return None
    return _coerce_bool(key, raw)


def parse_optional_date(args, key: str) -> date | None:
    raw = args.get(key)
    if raw is None or raw == "":
        return None
    return _coerce_date(key, raw)


PAYMENT_METHODS = ("CREDIT_CARD", "BANK_TRANSFER", "CHECK", "CASH")
ORDER_STATUSES = (
    "DEPOSIT_PAID", "DESIGN_IN_PROGRESS", "WAITING_APPROVAL", "IN_PRODUCTION",
    "QUALITY_CHECK", "READY_FOR_PICKUP", "SHIPPED", "COMPLETED", "CANCELLED",
)

SUBMIT_QUOTE_SCHEMA = RequestSchema(fields={
    "customer_id": FieldSpec("int", min_value=1),
    "service_id": FieldSpec("int", required=True, min_value=1),
    "tier_id": FieldSpec("int", min_value=1),
    "answers": FieldSpec("list"),
    "customer_notes": FieldSpec("str", max_length=5000),
    "no_design_files": FieldSpec("bool"),
})

ADD_ANSWER_SCHEMA = RequestSchema(fields={
    "option_key": FieldSpec("str", required=True, max_length=100),
    "option_label": FieldSpec("str", max_length=255),
    "answer_value": FieldSpec("str", required=True),
})

START_REVIEW_SCHEMA = RequestSchema(fields={
    "estimate_min_cents": FieldSpec("int", min_value=0, max_value=MAX_AMOUNT_CENTS),
    "estimate_max_cents": FieldSpec("int", min_value=0, max_value=MAX_AMOUNT_CENTS),
    "admin_notes": FieldSpec("str", max_length=5000),
})

FINALIZE_QUOTE_SCHEMA = RequestSchema(fields={
    "final_subtotal_cents": FieldSpec("int", required=True, min_value=0, max_value=MAX_AMOUNT_CENTS),
    "tax_rate_bps": FieldSpec("int", required=True, min_value=0, max_value=MAX_BPS),
    "admin_notes": FieldSpec("str", max_length=5000),
    "rush": FieldSpec("bool"),
    "deposit_method": FieldSpec("str", choices=PAYMENT_METHODS),
})

REJECT_QUOTE_SCHEMA = RequestSchema(fields={
    "reason": FieldSpec("str", max_length=255),
})

ADVANCE_STATUS_SCHEMA = RequestSchema(fields={
    "status": FieldSpec("str", required=True, choices=ORDER_STATUSES),
    "force": FieldSpec("bool"),
})

RECORD_REVISION_SCHEMA = RequestSchema(fields={
    "override": FieldSpec("bool"),
})

ASSIGN_STAFF_SCHEMA = RequestSchema(fields={
    "staff_id": FieldSpec("int", min_value=1),
})

SET_PRIORITY_SCHEMA = RequestSchema(fields={
    "priority": FieldSpec("int", required=True, min_value=1, max_value=5),
})

CHECKLIST_SCHEMA = RequestSchema(fields={
    "notes": FieldSpec("str", max_length=5000),
})

UPLOAD_PROOF_SCHEMA = RequestSchema(fields={
    "file_ref": FieldSpec("str", required=True, max_length=512),
    "file_type": FieldSpec("str", max_length=64),
    "file_size": FieldSpec("int", min_value=0),
    "note": FieldSpec("str", max_length=5000),
})

RESPOND_PROOF_SCHEMA = RequestSchema(fields={
    "decision": FieldSpec("str", required=True, choices=("APPROVE", "REQUEST_REVISION")),
    "customer_comment": FieldSpec("str", max_length=5000),
    "override_limit": FieldSpec("bool"),
})

CREATE_BOOKING_SCHEMA = RequestSchema(fields={
    "quote_id": FieldSpec("int", required=True, min_value=1),
    "booking_date": FieldSpec("date", required=True),
    "time_slot": FieldSpec("str", max_length=50),
    "is_emergency": FieldSpec("bool"),
})

RESCHEDULE_BOOKING_SCHEMA = RequestSchema(fields={
    "booking_date": FieldSpec("date", required=True),
    "time_slot": FieldSpec("str", max_length=50),
})

CANCEL_BOOKING_SCHEMA = RequestSchema(fields={
    "reason": FieldSpec("str", max_length=255),
})

CAPACITY_SETTING_SCHEMA = RequestSchema(fields={
    "is_working_day": FieldSpec("bool"),
    "start_time": FieldSpec("str", max_length=5),
    "end_time": FieldSpec("str", max_length=5),
    "default_slots": FieldSpec("int", min_value=0, max_value=1000),
    "emergency_slots_max": FieldSpec("int", min_value=0, max_value=1000),
    "emergency_fee_bps": FieldSpec("int", min_value=0, max_value=MAX_BPS),
})

CAPACITY_OVERRIDE_SCHEMA = RequestSchema(fields={
    "override_date": FieldSpec("date", required=True),
    "slots_available": FieldSpec("int", required=True, min_value=0, max_value=1000),
    "reason": FieldSpec("str", max_length=255),
})

BLACKOUT_SCHEMA = RequestSchema(fields={
    "start_date": FieldSpec("date", required=True),
    "end_date": FieldSpec("date", required=True),
    "reason": FieldSpec("str", max_length=255),
})

RECORD_PAYMENT_SCHEMA = RequestSchema(fields={
    "amount_cents": FieldSpec("int", required=True, min_value=1, max_value=MAX_AMOUNT_CENTS),
    "method": FieldSpec("str", required=True, choices=PAYMENT_METHODS),
    "transaction_ref": FieldSpec("str", max_length=255),
    "confirm": FieldSpec("bool"),
})

FAIL_PAYMENT_SCHEMA = RequestSchema(fields={
    "reason": FieldSpec("str", max_length=255),
})

REFUND_PAYMENT_SCHEMA = RequestSchema(fields={
    "amount_cents": FieldSpec("int", required=True, min_value=1, max_value=MAX_AMOUNT_CENTS),
    "reason": FieldSpec("str", required=True, max_length=255),
})

INVENTORY_MOVEMENT_SCHEMA = RequestSchema(fields={
    "transaction_type": FieldSpec("str", required=True, choices=("PURCHASE", "RETURN", "ADJUSTMENT")),
    "qty_change": FieldSpec("int", required=True),
    "reason": FieldSpec("str", required=True, max_length=255),
})

RESOLVE_BREACH_SCHEMA = RequestSchema(fields={
    "reason": FieldSpec("str", max_length=255),
})

MARK_DISPATCHED_SCHEMA = RequestSchema(fields={
    "event_ids": FieldSpec("list", required=True),
})

SCAN_SCHEMA = RequestSchema(fields={
    "now": FieldSpec("datetime"),
})
