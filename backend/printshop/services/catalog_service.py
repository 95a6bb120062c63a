# Overview: Service-layer operations for the pricing catalog; read-only reference data for quoting and orders.

"""
Pricing & Catalog

Services, options, tiers and deliverables are reference data. Nothing here
mutates lifecycle state; the quote and order engines consult it for:
- answer validation against typed option definitions
- price estimates (base price x tier multiplier + option impacts)
- revision limits, deposit rates, turnaround and SLA hours
- tier deliverables that become order checklist items
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..models import Service, ServiceOption, Tier, TierDeliverable
from ..errors import NotFoundError, ValidationError
from ..money_utils import apply_bps


FIELD_TYPES = {"text", "number", "select", "radio", "checkbox", "textarea"}
CHOICE_FIELD_TYPES = {"select", "radio"}
TRUTHY_ANSWERS = {"true", "yes", "1", "on"}


@dataclass(frozen=True)
class Answer:
    option_key: str
    option_label: str
    answer_value: str


@dataclass(frozen=True)
class OptionPricing:
    """Typed view of ServiceOption.pricing_impact."""
    per_choice: dict
    flat_cents: int
    per_unit_cents: int

    @classmethod
    def from_json(cls, raw: dict | None) -> "OptionPricing":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ValidationError("pricing_impact must be an object")
        per_choice = raw.get("per_choice") or {}
        return cls(
            per_choice={str(k): int(v) for k, v in per_choice.items()},
            flat_cents=int(raw.get("flat_cents") or 0),
            per_unit_cents=int(raw.get("per_unit_cents") or 0),
        )

    def impact_cents(self, option: ServiceOption, value: str) -> int:
        if option.field_type in CHOICE_FIELD_TYPES:
            return self.per_choice.get(value, 0)
        if option.field_type == "checkbox":
            return self.flat_cents if value.lower() in TRUTHY_ANSWERS else 0
        if option.field_type == "number" and self.per_unit_cents:
            return self.per_unit_cents * int(_to_decimal(option, value))
        return 0


def get_service(service_id: int) -> Service:
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFoundError(f"Service {service_id} not found")
    return service


def get_active_service(service_id: int) -> Service:
    service = get_service(service_id)
    if not service.is_active:
        raise ValidationError(f"Service {service_id} is not active", details={"service_id": service_id})
    return service


def get_active_tier(tier_id: int) -> Tier:
    tier = db.session.get(Tier, tier_id)
    if tier is None:
        raise NotFoundError(f"Tier {tier_id} not found")
    if not tier.is_active:
        raise ValidationError(f"Tier {tier_id} is not active", details={"tier_id": tier_id})
    return tier


def list_services(*, include_inactive: bool = False) -> list[Service]:
    q = db.session.query(Service)
    if not include_inactive:
        q = q.filter(Service.is_active.is_(True))
    return q.order_by(Service.name.asc()).all()


def list_tiers(*, include_inactive: bool = False) -> list[Tier]:
    q = db.session.query(Tier)
    if not include_inactive:
        q = q.filter(Tier.is_active.is_(True))
    return q.order_by(Tier.sort_order.asc(), Tier.id.asc()).all()


def _to_decimal(option: ServiceOption, value: str) -> Decimal:
    try:
        return Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        raise ValidationError(f"{option.field_key} must be a number", details={"option_key": option.field_key})


def validate_answers(service: Service, answers: list[dict]) -> list[Answer]:
    """
    Validate raw answers against the service's option definitions.

    - one answer per option key
    - every required option answered
    - select/radio values must be one of the declared choices
    - number values must respect validation_rules min/max
    - keys the service does not define are kept as free-form answers
    """
    options = {opt.field_key: opt for opt in service.options}
    normalized: list[Answer] = []
    seen: set[str] = set()

    for raw in answers or []:
        if not isinstance(raw, dict):
            raise ValidationError("Each answer must be an object")
        key = str(raw.get("option_key") or "").strip()
        value = raw.get("answer_value")
        if not key:
            raise ValidationError("option_key is required for every answer")
        if len(key) > 100:
            raise ValidationError("option_key exceeds max length 100")
        if key in seen:
            raise ValidationError(f"Duplicate answer for option {key}", details={"option_key": key})
        if value is None or str(value).strip() == "":
            raise ValidationError(f"answer_value is required for option {key}", details={"option_key": key})
        seen.add(key)
        value = str(value).strip()

        option = options.get(key)
        label = str(raw.get("option_label") or (option.label if option else key)).strip()

        if option is not None:
            if option.field_type in CHOICE_FIELD_TYPES and option.choices and value not in option.choices:
                raise ValidationError(
                    f"{key} must be one of {option.choices}",
                    details={"option_key": key, "choices": option.choices},
                )
            if option.field_type == "number":
                number = _to_decimal(option, value)
                rules = option.validation_rules or {}
                if "min" in rules and number < Decimal(str(rules["min"])):
                    raise ValidationError(f"{key} must be >= {rules['min']}", details={"option_key": key})
                if "max" in rules and number > Decimal(str(rules["max"])):
                    raise ValidationError(f"{key} must be <= {rules['max']}", details={"option_key": key})

        normalized.append(Answer(option_key=key, option_label=label[:255], answer_value=value))

    missing = [key for key, opt in options.items() if opt.is_required and key not in seen]
    if missing:
        raise ValidationError(
            f"Missing required answers: {', '.join(sorted(missing))}",
            details={"missing": sorted(missing)},
        )

    return normalized


def estimate_price(service: Service, tier: Tier | None, answers: list[Answer]) -> tuple[int | None, int | None]:
    """
    Estimate range in cents.

    min = base_price x tier multiplier + sum of option impacts
    max = min + tier rush fee (the most a customer could be quoted)
    Returns (None, None) when the service has no base price.
    """
    if service.base_price_cents is None:
        return None, None

    multiplier_bps = tier.price_multiplier_bps if tier is not None else 10_000
    base = apply_bps(service.base_price_cents, multiplier_bps)

    options = {opt.field_key: opt for opt in service.options}
    extras = 0
    for answer in answers:
        option = options.get(answer.option_key)
        if option is None:
            continue
        extras += OptionPricing.from_json(option.pricing_impact).impact_cents(option, answer.answer_value)

    estimate_min = base + extras
    rush_bps = tier.rush_fee_bps if tier is not None else 0
    estimate_max = estimate_min + apply_bps(estimate_min, rush_bps or 0)
    return estimate_min, estimate_max


def revision_limit(tier: Tier | None) -> int | None:
    """Finite revision limit, or None when unlimited."""
    if tier is None:
        return current_app.config["DEFAULT_REVISIONS_ALLOWED"]
    allowed = tier.revisions_allowed
    if allowed is None:
        return current_app.config["DEFAULT_REVISIONS_ALLOWED"]
    if allowed == 0 or allowed >= current_app.config["UNLIMITED_REVISIONS_SENTINEL"]:
        return None
    return allowed


def deposit_percentage_bps(service: Service, tier: Tier | None) -> int:
    if tier is not None and tier.deposit_percentage_bps is not None:
        return tier.deposit_percentage_bps
    if service.deposit_percentage_bps is not None:
        return service.deposit_percentage_bps
    return current_app.config["DEFAULT_DEPOSIT_BPS"]


def production_days(tier: Tier | None) -> int:
    if tier is not None and tier.turnaround_days_max:
        return tier.turnaround_days_max
    return current_app.config["DEFAULT_PRODUCTION_DAYS"]


def first_proof_hours(tier: Tier | None) -> int:
    if tier is not None and tier.sla_response_hours:
        return tier.sla_response_hours
    return current_app.config["FIRST_PROOF_SLA_HOURS"]


def deliverables_for(tier: Tier | None, service: Service) -> list[TierDeliverable]:
    """Tier deliverables whose category filter is empty or matches the service's category."""
    if tier is None:
        return []
    category_slug = service.category.slug if service.category is not None else None
    return [
        d for d in tier.deliverables
        if not d.service_category_filter or d.service_category_filter == category_slug
    ]
