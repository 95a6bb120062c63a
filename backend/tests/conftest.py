"""
Pytest fixtures for printshop backend tests.

Provides the in-memory database, test client, pricing catalog, weekday
capacity, stock, and factories that walk a quote through to an order.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from printshop import create_app
from printshop.config import TestConfig
from printshop.extensions import db
from printshop.models import (
    ServiceCategory, Service, ServiceOption, Tier, TierDeliverable,
    CapacitySetting, InventoryItem, MaterialConsumptionRule,
)
from printshop.services import inventory_service, quote_service
from printshop.time_utils import utcnow


CUSTOMER_ID = 101
OTHER_CUSTOMER_ID = 202
STAFF_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def category(db_session):
    category = ServiceCategory(name="Print", slug="print")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def service(db_session, category):
    """Business cards: proof required, 25.00 base plus 0.12 per card."""
    service = Service(
        category_id=category.id,
        name="Business Cards",
        slug="business-cards",
        requires_proof=True,
        base_price_cents=2500,
    )
    db_session.add(service)
    db_session.flush()
    db_session.add_all([
        ServiceOption(
            service_id=service.id, field_key="quantity", label="Quantity", field_type="number",
            is_required=True, pricing_impact={"per_unit_cents": 12},
            validation_rules={"min": 1, "max": 10000}, sort_order=1,
        ),
        ServiceOption(
            service_id=service.id, field_key="finish", label="Finish", field_type="select",
            is_required=True, choices=["matte", "gloss"],
            pricing_impact={"per_choice": {"matte": 0, "gloss": 1500}}, sort_order=2,
        ),
    ])
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def proofless_service(db_session, category):
    """Reprint of customer-supplied artwork: no proof step."""
    service = Service(
        category_id=category.id,
        name="Reprint",
        slug="reprint",
        requires_proof=False,
        base_price_cents=1000,
        deposit_percentage_bps=2500,
    )
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def tier(db_session):
    """Standard: two revisions, 25% rush, 50% deposit, one deliverable."""
    tier = Tier(
        name="Standard",
        slug="standard",
        turnaround_days_min=5,
        turnaround_days_max=7,
        revisions_allowed=2,
        rush_fee_bps=2500,
        deposit_percentage_bps=5000,
        price_multiplier_bps=10_000,
        sla_response_hours=48,
    )
    db_session.add(tier)
    db_session.flush()
    db_session.add(TierDeliverable(tier_id=tier.id, description="Final quality check signed off"))
    db_session.commit()
    return tier


@pytest.fixture(scope='function')
def unlimited_tier(db_session):
    tier = Tier(
        name="Deluxe",
        slug="deluxe",
        turnaround_days_max=3,
        revisions_allowed=999,
        rush_fee_bps=1500,
        deposit_percentage_bps=3000,
        price_multiplier_bps=15_000,
    )
    db_session.add(tier)
    db_session.commit()
    return tier


# =============================================================================
# CAPACITY AND STOCK
# =============================================================================


@pytest.fixture(scope='function')
def capacity(db_session):
    """Mon-Fri: 2 standard and 1 emergency slot from 09:00, 20% emergency fee. Weekends closed."""
    for day in range(7):
        working = day < 5
        db_session.add(CapacitySetting(
            day_of_week=day,
            is_working_day=working,
            start_time="09:00" if working else None,
            end_time="17:00" if working else None,
            default_slots=2 if working else 0,
            emergency_slots_max=1 if working else 0,
            emergency_fee_bps=2000,
        ))
    db_session.commit()


def _next_weekday(start: date, weekday: int) -> date:
    return start + timedelta(days=(weekday - start.weekday()) % 7)


@pytest.fixture(scope='function')
def next_monday():
    return _next_weekday(utcnow().date() + timedelta(days=7), 0)


@pytest.fixture(scope='function')
def stock_item(db_session):
    """Card stock with 10 sheets on hand and a reorder point of 3."""
    item = InventoryItem(sku="CARD-350", name="350gsm card", category="paper", unit="sheet", reorder_point=3)
    db_session.add(item)
    db_session.commit()
    inventory_service.record_movement(item.id, transaction_type="PURCHASE", qty_change=10, reason="Opening stock")
    return item


@pytest.fixture(scope='function')
def card_rule(db_session, service, stock_item):
    """0.2 sheets per card: 10 cards consume 2 sheets."""
    rule = MaterialConsumptionRule(
        service_id=service.id, inventory_item_id=stock_item.id, qty_per_unit=Decimal("0.2"),
    )
    db_session.add(rule)
    db_session.commit()
    return rule


# =============================================================================
# LIFECYCLE FACTORIES
# =============================================================================


def card_answers(quantity: str = "10", finish: str = "matte") -> list[dict]:
    return [
        {"option_key": "quantity", "answer_value": quantity},
        {"option_key": "finish", "answer_value": finish},
    ]


@pytest.fixture(scope='function')
def make_quote(db_session, service, tier):
    """Submit a REQUESTED business-card quote on the Standard tier."""
    def _make(customer_id=CUSTOMER_ID, *, service_id=None, tier_id="default", answers=None, now=None):
        if tier_id == "default":
            tier_id = tier.id
        if service_id is None:
            service_id = service.id
            if answers is None:
                answers = card_answers()
        return quote_service.submit_quote(
            customer_id,
            service_id,
            tier_id=tier_id,
            answers=answers or [],
            now=now,
        )

    return _make


@pytest.fixture(scope='function')
def make_order(make_quote):
    """
    Quote -> review -> finalize at 120.00 with 10% tax.

    With the Standard tier: total 132.00, deposit 66.00, balance 66.00.
    """
    def _make(*, subtotal=12_000, tax_rate_bps=1000, rush=False, now=None, **quote_kwargs):
        quote = make_quote(now=now, **quote_kwargs)
        quote_service.start_review(quote.id, STAFF_ID)
        return quote_service.finalize_quote(
            quote.id, subtotal, tax_rate_bps, rush=rush, staff_id=STAFF_ID, now=now,
        )

    return _make
