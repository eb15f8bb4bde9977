"""
Order lifecycle service: two-phase create with compensation, and status transitions.
"""

import pytest
from sqlalchemy.exc import OperationalError

from racktrack.errors import (
    InvalidTransition,
    NotFound,
    PartialCreateFailure,
    PersistenceFailure,
    UnknownState,
    ValidationError,
)
from racktrack.models import CustomerPO, CustomerPOItem, CustomerPOStatusHistory
from racktrack.services import order_service
from racktrack.services.order_repository import OrderRepository


@pytest.fixture
def repo(db_session):
    return OrderRepository(db_session)


def _history(db_session, order_id):
    return (
        db_session.query(CustomerPOStatusHistory)
        .filter_by(po_id=order_id)
        .order_by(CustomerPOStatusHistory.id)
        .all()
    )


def _advance(repo, order, actor_id, *statuses):
    for status in statuses:
        order = order_service.transition(repo, order.id, status, actor_id=actor_id)
    return order


class TestCreate:
    def test_creates_draft_with_numbered_lines(self, repo, admin_user, customer, product):
        order = order_service.create(
            repo,
            {"customer_id": customer.id, "description": "Pallet racking bay", "due_date": "2026-11-30"},
            [
                {"product_id": product.id, "quantity": 4, "unit_price_cents": 4250},
                {"description": "Install labour", "quantity": 1, "unit_price_cents": 30000},
            ],
            actor_id=admin_user.id,
        )

        assert order.production_status == "draft"
        assert order.po_number == "PO-000001"
        assert order.customer.name == "Northwind Storage"
        assert [line.line_number for line in order.lines] == [1, 2]
        assert order.lines[0].total_amount_cents == 17000
        assert order.lines[0].product.sku == "BEAM-96"
        assert order.total_amount_cents == 47000
        assert order.created_by == admin_user.id
        assert order.due_date.isoformat() == "2026-11-30"

    def test_generated_numbers_follow_row_count(self, repo, admin_user):
        first = order_service.create(repo, {"description": "a"}, actor_id=admin_user.id)
        second = order_service.create(repo, {"description": "b"}, actor_id=admin_user.id)
        assert (first.po_number, second.po_number) == ("PO-000001", "PO-000002")

    def test_explicit_po_number_is_kept(self, repo, admin_user):
        order = order_service.create(repo, {"po_number": "CUST-7781"}, actor_id=admin_user.id)
        assert order.po_number == "CUST-7781"

    def test_middle_line_failure_compensates_order(self, repo, db_session, admin_user, customer, product):
        with pytest.raises(PartialCreateFailure) as excinfo:
            order_service.create(
                repo,
                {"customer_id": customer.id, "po_number": "PO-FAIL-1"},
                [
                    {"product_id": product.id, "quantity": 2, "unit_price_cents": 100},
                    {"product_id": 999999, "quantity": 1, "unit_price_cents": 100},
                    {"description": "Freight", "quantity": 1, "unit_price_cents": 2500},
                ],
                actor_id=admin_user.id,
            )

        err = excinfo.value
        assert err.http_status == 500
        assert err.context["compensated"] is True
        assert err.context["po_number"] == "PO-FAIL-1"

        db_session.expire_all()
        assert db_session.query(CustomerPO).filter_by(po_number="PO-FAIL-1").count() == 0
        assert db_session.query(CustomerPOItem).count() == 0

    def test_number_is_reusable_after_compensation(self, repo, db_session, admin_user):
        with pytest.raises(PartialCreateFailure):
            order_service.create(repo, {}, [{"product_id": 424242, "quantity": 1}], actor_id=admin_user.id)

        order = order_service.create(repo, {}, actor_id=admin_user.id)
        assert order.po_number == "PO-000001"

    def test_duplicate_po_number_is_persistence_failure(self, repo, db_session, admin_user):
        order_service.create(repo, {"po_number": "PO-DUP"}, actor_id=admin_user.id)

        with pytest.raises(PersistenceFailure) as excinfo:
            order_service.create(repo, {"po_number": "PO-DUP"}, actor_id=admin_user.id)

        assert excinfo.value.operation == "create_order"
        assert db_session.query(CustomerPO).filter_by(po_number="PO-DUP").count() == 1

    @pytest.mark.parametrize("line", [
        {"quantity": 0},
        {"quantity": -3},
        {"quantity": "lots"},
        {"description": "no quantity"},
        {"quantity": 1, "unit_price_cents": -5},
    ])
    def test_invalid_lines_write_nothing(self, repo, db_session, admin_user, line):
        with pytest.raises(ValidationError):
            order_service.create(repo, {"po_number": "PO-BAD"}, [line], actor_id=admin_user.id)
        assert db_session.query(CustomerPO).count() == 0

    def test_new_orders_must_start_in_draft(self, repo, db_session, admin_user):
        with pytest.raises(ValidationError):
            order_service.create(repo, {"production_status": "approved"}, actor_id=admin_user.id)
        assert db_session.query(CustomerPO).count() == 0

    def test_unknown_order_fields_rejected(self, repo, admin_user):
        with pytest.raises(ValidationError):
            order_service.create(repo, {"qb_estimate_id": "77"}, actor_id=admin_user.id)


class TestTransition:
    @pytest.fixture
    def order(self, repo, admin_user, customer):
        return order_service.create(repo, {"customer_id": customer.id}, actor_id=admin_user.id)

    def test_legal_transition_updates_status_and_history(self, repo, db_session, order, admin_user):
        updated = order_service.transition(repo, order.id, "pending_approval", actor_id=admin_user.id)

        assert updated.production_status == "pending_approval"
        assert updated.updated_by == admin_user.id

        history = _history(db_session, order.id)
        assert len(history) == 1
        assert (history[0].from_status, history[0].to_status) == ("draft", "pending_approval")
        assert history[0].changed_by == admin_user.id
        assert history[0].changed_at is not None

    def test_invalid_transition_changes_nothing(self, repo, db_session, order, admin_user):
        with pytest.raises(InvalidTransition) as excinfo:
            order_service.transition(repo, order.id, "in_production", actor_id=admin_user.id)

        assert excinfo.value.valid_transitions == ["pending_approval", "cancelled"]
        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id).production_status == "draft"
        assert _history(db_session, order.id) == []

    def test_unknown_status_is_not_an_invalid_transition(self, repo, order, admin_user):
        with pytest.raises(UnknownState):
            order_service.transition(repo, order.id, "shipped", actor_id=admin_user.id)

    def test_missing_order(self, repo, admin_user):
        with pytest.raises(NotFound):
            order_service.transition(repo, 4040, "pending_approval", actor_id=admin_user.id)

    def test_full_happy_path_records_every_step(self, repo, db_session, order, admin_user):
        path = [
            "pending_approval", "approved", "sent_to_production", "in_production",
            "quality_check", "ready_for_invoice", "invoiced",
        ]
        _advance(repo, order, admin_user.id, *path)

        history = _history(db_session, order.id)
        assert [h.to_status for h in history] == path
        assert [h.from_status for h in history] == ["draft"] + path[:-1]

        with pytest.raises(InvalidTransition) as excinfo:
            order_service.transition(repo, order.id, "cancelled", actor_id=admin_user.id)
        assert excinfo.value.valid_transitions == []

    def test_on_hold_requires_reason(self, repo, db_session, order, admin_user):
        _advance(repo, order, admin_user.id, "pending_approval", "approved", "sent_to_production")

        for reason in (None, "", "   "):
            with pytest.raises(ValidationError):
                order_service.transition(repo, order.id, "on_hold", actor_id=admin_user.id, reason=reason)

        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id).production_status == "sent_to_production"

    def test_hold_reason_set_then_cleared(self, repo, db_session, order, admin_user):
        _advance(repo, order, admin_user.id, "pending_approval", "approved", "sent_to_production")

        held = order_service.transition(
            repo, order.id, "on_hold", actor_id=admin_user.id, reason="Waiting on uprights"
        )
        assert held.hold_reason == "Waiting on uprights"
        assert _history(db_session, order.id)[-1].reason == "Waiting on uprights"

        resumed = order_service.transition(repo, order.id, "in_production", actor_id=admin_user.id)
        assert resumed.hold_reason is None
        assert _history(db_session, order.id)[-1].reason is None

    def test_notes_overwrite_production_notes(self, repo, order, admin_user):
        first = order_service.transition(
            repo, order.id, "pending_approval", actor_id=admin_user.id, notes="Rush job"
        )
        assert first.production_notes == "Rush job"

        second = order_service.transition(repo, order.id, "approved", actor_id=admin_user.id)
        assert second.production_notes == "Rush job"

        third = order_service.transition(
            repo, order.id, "sent_to_production", actor_id=admin_user.id, notes="Line 2"
        )
        assert third.production_notes == "Line 2"

    def test_storage_failure_surfaces_and_keeps_old_status(self, repo, db_session, order, admin_user, monkeypatch):
        def failing_commit():
            raise OperationalError("UPDATE customer_pos", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", failing_commit)
        with pytest.raises(PersistenceFailure) as excinfo:
            order_service.transition(repo, order.id, "pending_approval", actor_id=admin_user.id)
        monkeypatch.undo()

        assert excinfo.value.operation == "update"
        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id).production_status == "draft"
        assert _history(db_session, order.id) == []


class TestEdit:
    @pytest.fixture
    def order(self, repo, admin_user, customer, product):
        return order_service.create(
            repo,
            {"customer_id": customer.id, "po_number": "PO-EDIT", "description": "Bay 4"},
            [
                {"product_id": product.id, "quantity": 2, "unit_price_cents": 4250},
                {"description": "Install labour", "quantity": 1, "unit_price_cents": 30000},
            ],
            actor_id=admin_user.id,
        )

    def test_fields_only_keeps_lines(self, repo, order, staff_user):
        updated = order_service.edit(
            repo, order.id, {"description": "Bay 4 and 5", "due_date": "2026-12-15"}, actor_id=staff_user.id
        )

        assert updated.description == "Bay 4 and 5"
        assert updated.due_date.isoformat() == "2026-12-15"
        assert updated.updated_by == staff_user.id
        assert [line.line_number for line in updated.lines] == [1, 2]
        assert updated.total_amount_cents == 38500

    def test_lines_are_replaced_and_renumbered(self, repo, db_session, order, admin_user):
        updated = order_service.edit(
            repo,
            order.id,
            {},
            [
                {"description": "Wire deck", "quantity": 6, "unit_price_cents": 1800, "line_number": 9},
                {"description": "Row spacer", "quantity": 4, "unit_price_cents": 700, "line_number": 3},
                {"description": "Freight", "quantity": 1, "unit_price_cents": 5000},
            ],
            actor_id=admin_user.id,
        )

        assert [(line.line_number, line.description) for line in updated.lines] == [
            (1, "Wire deck"), (2, "Row spacer"), (3, "Freight"),
        ]
        assert updated.total_amount_cents == 10800 + 2800 + 5000
        assert db_session.query(CustomerPOItem).filter_by(po_id=order.id).count() == 3

    def test_empty_list_clears_lines(self, repo, order, admin_user):
        updated = order_service.edit(repo, order.id, {}, [], actor_id=admin_user.id)
        assert updated.lines == []
        assert updated.total_amount_cents == 0

    def test_explicit_total_wins(self, repo, order, admin_user):
        updated = order_service.edit(
            repo, order.id, {"total_amount_cents": 99900}, [{"quantity": 1, "unit_price_cents": 10}],
            actor_id=admin_user.id,
        )
        assert updated.total_amount_cents == 99900

    @pytest.mark.parametrize("status", ["draft", "approved", None])
    def test_production_status_is_refused(self, repo, db_session, order, admin_user, status):
        with pytest.raises(ValidationError) as excinfo:
            order_service.edit(repo, order.id, {"production_status": status}, actor_id=admin_user.id)

        assert excinfo.value.context["field"] == "production_status"
        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id).production_status == "draft"
        assert _history(db_session, order.id) == []

    def test_blank_po_number_is_refused(self, repo, order, admin_user):
        with pytest.raises(ValidationError):
            order_service.edit(repo, order.id, {"po_number": "  "}, actor_id=admin_user.id)

    def test_null_clears_optional_field(self, repo, order, admin_user):
        updated = order_service.edit(repo, order.id, {"description": None}, actor_id=admin_user.id)
        assert updated.description is None

    def test_bad_line_changes_nothing(self, repo, db_session, order, admin_user):
        with pytest.raises(ValidationError):
            order_service.edit(
                repo, order.id, {"description": "changed"}, [{"quantity": 0}], actor_id=admin_user.id
            )

        db_session.expire_all()
        reloaded = db_session.get(CustomerPO, order.id)
        assert reloaded.description == "Bay 4"
        assert len(reloaded.lines) == 2

    def test_line_storage_failure_keeps_previous_lines(self, repo, db_session, order, admin_user):
        with pytest.raises(PersistenceFailure) as excinfo:
            order_service.edit(
                repo, order.id, {"description": "changed"},
                [{"product_id": 999999, "quantity": 1}], actor_id=admin_user.id,
            )

        assert excinfo.value.operation == "replace_lines"
        db_session.expire_all()
        reloaded = db_session.get(CustomerPO, order.id)
        assert reloaded.description == "Bay 4"
        assert [line.line_number for line in reloaded.lines] == [1, 2]

    def test_missing_order(self, repo, admin_user):
        with pytest.raises(NotFound):
            order_service.edit(repo, 4040, {"description": "x"}, actor_id=admin_user.id)


class TestDelete:
    @pytest.fixture
    def order(self, repo, admin_user, product):
        return order_service.create(
            repo, {"po_number": "PO-DEL"}, [{"product_id": product.id, "quantity": 1}], actor_id=admin_user.id
        )

    def test_removes_order_lines_and_history(self, repo, db_session, order, admin_user):
        _advance(repo, order, admin_user.id, "pending_approval", "approved")

        order_service.delete(repo, order.id, actor_id=admin_user.id)

        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id) is None
        assert db_session.query(CustomerPOItem).count() == 0
        assert _history(db_session, order.id) == []

    @pytest.mark.parametrize("path", [
        ("pending_approval", "approved", "sent_to_production", "in_production"),
        ("pending_approval", "approved", "sent_to_production", "in_production",
         "quality_check", "ready_for_invoice", "invoiced"),
    ])
    def test_in_production_or_invoiced_is_kept(self, repo, db_session, order, admin_user, path):
        _advance(repo, order, admin_user.id, *path)

        with pytest.raises(ValidationError) as excinfo:
            order_service.delete(repo, order.id, actor_id=admin_user.id)

        assert excinfo.value.context["production_status"] == path[-1]
        db_session.expire_all()
        assert db_session.get(CustomerPO, order.id) is not None

    def test_cancelled_order_can_be_deleted(self, repo, db_session, order, admin_user):
        _advance(repo, order, admin_user.id, "cancelled")
        order_service.delete(repo, order.id, actor_id=admin_user.id)
        assert db_session.query(CustomerPO).count() == 0

    def test_missing_order(self, repo, admin_user):
        with pytest.raises(NotFound):
            order_service.delete(repo, 4040, actor_id=admin_user.id)


class TestList:
    def test_filters(self, repo, admin_user, customer):
        a = order_service.create(repo, {"customer_id": customer.id, "description": "Mezzanine"}, actor_id=admin_user.id)
        order_service.create(repo, {"description": "Cantilever"}, actor_id=admin_user.id)
        order_service.transition(repo, a.id, "pending_approval", actor_id=admin_user.id)

        assert len(order_service.list_orders(repo, status="all")) == 2
        assert [o.id for o in order_service.list_orders(repo, status="pending_approval")] == [a.id]
        assert [o.id for o in order_service.list_orders(repo, customer_id=customer.id)] == [a.id]
        assert [o.description for o in order_service.list_orders(repo, search="canti")] == ["Cantilever"]

    def test_unknown_status_filter(self, repo):
        with pytest.raises(UnknownState):
            order_service.list_orders(repo, status="bogus")
