"""
Order engine tests.

Verifies:
- Totals, deposit and balance derived at creation
- The status graph and its gates (proof approval, checklist)
- Side effects of status moves (timers, consumption, timestamps)
- Revision limits and repricing
"""

from datetime import timedelta

import pytest

from printshop.errors import (
    IllegalTransitionError,
    InvalidStateError,
    RevisionLimitExceeded,
    ValidationError,
)
from printshop.models import DomainEvent, Order, OrderChecklistItem, Payment, SlaTimer
from printshop.services import inventory_service, order_service
from printshop.time_utils import utcnow

from conftest import STAFF_ID


def _timers(db_session, order_id, timer_type):
    return db_session.query(SlaTimer).filter_by(order_id=order_id, timer_type=timer_type).all()


class TestOrderCreation:

    def test_totals_deposit_and_balance(self, db_session, make_order):
        order = make_order()

        assert order.subtotal_cents == 12_000
        assert order.tax_amount_cents == 1200
        assert order.total_amount_cents == 13_200
        assert order.deposit_percentage_bps == 5000
        assert order.deposit_amount_cents == 6600
        assert order.balance_due_cents == 6600
        assert order.priority == 3
        assert order.quantity == 10
        assert order.revisions_used == 0

    def test_deposit_recorded_as_completed_payment(self, db_session, make_order):
        order = make_order()
        deposit = db_session.query(Payment).filter_by(order_id=order.id).one()
        assert deposit.is_deposit is True
        assert deposit.status == "COMPLETED"
        assert deposit.amount_cents == 6600
        assert deposit.payment_number == "PAY-000001"

    def test_rush_adds_fee_and_top_priority(self, db_session, make_order):
        order = make_order(rush=True)
        # 25% of 120.00
        assert order.rush_fee_cents == 3000
        assert order.tax_amount_cents == 1500
        assert order.total_amount_cents == 16_500
        assert order.priority == 1

    def test_due_at_follows_tier_turnaround(self, db_session, make_order):
        now = utcnow().replace(microsecond=0)
        order = make_order(now=now)
        assert order.due_at == now + timedelta(days=7)

    def test_checklist_copied_from_tier_deliverables(self, db_session, make_order):
        order = make_order()
        assert [item.description for item in order.checklist_items] == ["Final quality check signed off"]
        assert not order.checklist_items[0].is_completed

    def test_service_deposit_used_without_tier(self, db_session, make_order, proofless_service):
        order = make_order(service_id=proofless_service.id, tier_id=None, subtotal=10_000, tax_rate_bps=0)
        assert order.deposit_percentage_bps == 2500
        assert order.deposit_amount_cents == 2500
        assert order.balance_due_cents == 7500

    def test_creation_emits_status_event(self, db_session, make_order):
        order = make_order()
        event = (
            db_session.query(DomainEvent)
            .filter_by(event_type="order.status_changed", order_id=order.id)
            .one()
        )
        assert event.payload["from"] is None
        assert event.payload["to"] == "DEPOSIT_PAID"

    def test_quote_can_spawn_only_one_order(self, db_session, make_order):
        order = make_order()
        quote = order.quote
        with pytest.raises(InvalidStateError):
            order_service.create_order_from_quote_locked(quote)
        db_session.rollback()
        assert db_session.query(Order).count() == 1


class TestStatusGraph:

    def test_illegal_jump_refused(self, db_session, make_order):
        order = make_order()
        with pytest.raises(IllegalTransitionError) as exc:
            order_service.advance_status(order.id, "COMPLETED")
        assert exc.value.details == {"current_status": "DEPOSIT_PAID", "target_status": "COMPLETED"}
        assert db_session.get(Order, order.id).status == "DEPOSIT_PAID"

    def test_unknown_status(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.advance_status(order.id, "LOST")

    def test_proof_required_blocks_shortcut(self, db_session, make_order):
        order = make_order()
        with pytest.raises(IllegalTransitionError):
            order_service.advance_status(order.id, "IN_PRODUCTION")

    def test_waiting_approval_needs_approved_proof(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "DESIGN_IN_PROGRESS")
        order_service.advance_status(order.id, "WAITING_APPROVAL")
        with pytest.raises(IllegalTransitionError):
            order_service.advance_status(order.id, "IN_PRODUCTION")

    def test_design_starts_first_proof_timer_once(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "DESIGN_IN_PROGRESS")
        order_service.advance_status(order.id, "WAITING_APPROVAL")
        order_service.advance_status(order.id, "DESIGN_IN_PROGRESS")

        timers = _timers(db_session, order.id, "FIRST_PROOF")
        assert len(timers) == 1
        # Standard tier responds within 48h
        assert timers[0].due_at - timers[0].started_at == timedelta(hours=48)

    def test_proofless_order_runs_to_completion(self, db_session, make_order, proofless_service, stock_item):
        inventory_service.create_consumption_rule({
            "service_id": proofless_service.id,
            "inventory_item_id": stock_item.id,
            "qty_per_unit": "2",
        })
        order = make_order(service_id=proofless_service.id, tier_id=None)

        order_service.advance_status(order.id, "IN_PRODUCTION")
        assert db_session.get(type(stock_item), stock_item.id).qty_on_hand == 8
        production = _timers(db_session, order.id, "PRODUCTION")
        assert len(production) == 1
        assert production[0].completed_at is None

        order_service.advance_status(order.id, "QUALITY_CHECK")
        order_service.advance_status(order.id, "READY_FOR_PICKUP")
        order_service.advance_status(order.id, "SHIPPED")
        order = order_service.advance_status(order.id, "COMPLETED")

        assert order.status == "COMPLETED"
        assert order.completed_at is not None
        assert _timers(db_session, order.id, "PRODUCTION")[0].completed_at is not None
        assert order.sla_breached is False

    def test_rework_does_not_consume_twice(self, db_session, make_order, proofless_service, stock_item):
        inventory_service.create_consumption_rule({
            "service_id": proofless_service.id,
            "inventory_item_id": stock_item.id,
            "qty_per_unit": "0.5",
        })
        order = make_order(service_id=proofless_service.id, tier_id=None)

        order_service.advance_status(order.id, "IN_PRODUCTION")
        order_service.advance_status(order.id, "QUALITY_CHECK")
        order_service.advance_status(order.id, "IN_PRODUCTION")

        # qty 1 x 0.5 rounds up to one sheet, once
        assert db_session.get(type(stock_item), stock_item.id).qty_on_hand == 9

    def test_rework_ignores_rules_added_after_production(self, db_session, make_order, proofless_service, stock_item):
        order = make_order(service_id=proofless_service.id, tier_id=None)
        order = order_service.advance_status(order.id, "IN_PRODUCTION")
        assert order.consumed_at is not None

        inventory_service.create_consumption_rule({
            "service_id": proofless_service.id,
            "inventory_item_id": stock_item.id,
            "qty_per_unit": "2",
        })
        order_service.advance_status(order.id, "QUALITY_CHECK")
        order_service.advance_status(order.id, "IN_PRODUCTION")

        assert db_session.get(type(stock_item), stock_item.id).qty_on_hand == 10

    def test_completion_gate_and_force(self, db_session, make_order, proofless_service, tier):
        order = make_order(service_id=proofless_service.id, tier_id=tier.id)
        for status in ("IN_PRODUCTION", "QUALITY_CHECK", "READY_FOR_PICKUP"):
            order_service.advance_status(order.id, status)

        item_id = order.checklist_items[0].id
        with pytest.raises(InvalidStateError) as exc:
            order_service.advance_status(order.id, "COMPLETED")
        assert exc.value.details["pending_checklist_item_ids"] == [item_id]

        order = order_service.advance_status(order.id, "COMPLETED", force=True, actor_id=STAFF_ID)
        assert order.status == "COMPLETED"
        event = db_session.query(DomainEvent).filter_by(event_type="order.status_changed").order_by(
            DomainEvent.id.desc()
        ).first()
        assert event.payload == {"from": "READY_FOR_PICKUP", "to": "COMPLETED", "forced": True}

        # Checklist rows are frozen once the order is closed
        with pytest.raises(InvalidStateError) as exc:
            order_service.complete_checklist_item(item_id, STAFF_ID)
        assert exc.value.details["current_status"] == "COMPLETED"
        assert not db_session.get(OrderChecklistItem, item_id).is_completed

    def test_completed_checklist_allows_completion(self, db_session, make_order, proofless_service, tier):
        order = make_order(service_id=proofless_service.id, tier_id=tier.id)
        for status in ("IN_PRODUCTION", "QUALITY_CHECK", "READY_FOR_PICKUP"):
            order_service.advance_status(order.id, status)

        item = order_service.complete_checklist_item(order.checklist_items[0].id, STAFF_ID, "Checked")
        assert item.is_completed
        assert item.completed_by_staff_id == STAFF_ID

        order = order_service.advance_status(order.id, "COMPLETED")
        assert order.status == "COMPLETED"

    def test_cancel_stops_timers_without_breach(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "DESIGN_IN_PROGRESS")

        order = order_service.advance_status(order.id, "CANCELLED")

        assert order.cancelled_at is not None
        timer = _timers(db_session, order.id, "FIRST_PROOF")[0]
        assert timer.completed_at is not None
        assert timer.is_breached is False

    def test_terminal_orders_are_frozen(self, db_session, make_order):
        order = make_order()
        order_service.advance_status(order.id, "CANCELLED")
        for target in ("DESIGN_IN_PROGRESS", "CANCELLED"):
            with pytest.raises(IllegalTransitionError):
                order_service.advance_status(order.id, target)
        with pytest.raises(InvalidStateError):
            order_service.set_priority(order.id, 2)


class TestRevisions:

    def test_limit_enforced(self, db_session, make_order):
        order = make_order()
        order_service.record_revision(order.id)
        order_service.record_revision(order.id)

        with pytest.raises(RevisionLimitExceeded) as exc:
            order_service.record_revision(order.id)
        assert exc.value.details == {"revisions_used": 2, "revisions_allowed": 2}
        assert db_session.get(Order, order.id).revisions_used == 2

    def test_override_exceeds_limit(self, db_session, make_order):
        order = make_order()
        for _ in range(2):
            order_service.record_revision(order.id)
        order = order_service.record_revision(order.id, override=True)
        assert order.revisions_used == 3

    def test_unlimited_tier(self, db_session, make_order, unlimited_tier):
        order = make_order(tier_id=unlimited_tier.id)
        for _ in range(5):
            order = order_service.record_revision(order.id)
        assert order.revisions_used == 5


class TestRepricingAndAssignment:

    def test_emergency_fee_reprices_total_not_deposit(self, db_session, make_order):
        order = make_order()
        order = order_service.apply_emergency_fee(order.id, 2400)

        assert order.emergency_fee_cents == 2400
        assert order.tax_amount_cents == 1440
        assert order.total_amount_cents == 15_840
        assert order.deposit_amount_cents == 6600
        assert order.balance_due_cents == 9240

    def test_negative_fee_refused(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.apply_emergency_fee(order.id, -1)

    @pytest.mark.parametrize("priority", [0, 6])
    def test_priority_bounds(self, db_session, make_order, priority):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.set_priority(order.id, priority)

    def test_assign_and_filter(self, db_session, make_order):
        first = make_order()
        make_order()
        order_service.assign_staff(first.id, STAFF_ID)

        orders, total = order_service.list_orders(assigned_staff_id=STAFF_ID)
        assert total == 1
        assert orders[0].id == first.id

    def test_list_sorted_by_priority(self, db_session, make_order):
        normal = make_order()
        rushed = make_order(rush=True)
        orders, total = order_service.list_orders(sort_by="priority", sort_order="asc")
        assert total == 2
        assert [o.id for o in orders] == [rushed.id, normal.id]
