# Overview: Pytest coverage for cash drawer sessions, movements, audited close and customer payments.

import pytest
from sqlalchemy.exc import IntegrityError

from cajapos.models import CashDrawerSession, CashMovement, Customer, LedgerEvent
from cajapos.services import cash_service, customer_service, sales_service
from cajapos.time_utils import utcnow


def _sell(product, quantity=1, **payment):
    payment = payment or {"method": "cash"}
    result = sales_service.process_sale([{"product_id": product.id, "quantity": quantity}], payment)
    assert result.success, result.error
    return result.value


@pytest.fixture
def closed_at_523_40(db_session):
    """A previous shift that was counted at 523.40."""
    now = utcnow()
    previous = CashDrawerSession(
        device_id="test-device",
        status="CLOSED",
        opened_at=now,
        opening_float=0.0,
        closed_at=now,
        closing_count=523.40,
        variance=0.0,
    )
    db_session.add(previous)
    db_session.commit()
    return previous


class TestAutoOpen:
    def test_first_read_opens_a_session(self, db_session):
        session = cash_service.open_or_get_active_session()

        assert session.status == "OPEN"
        assert session.device_id == "test-device"
        assert session.opening_float == 0.0
        assert session.auto_opened is True
        assert db_session.query(LedgerEvent).filter_by(event_type="cash.session_opened").count() == 1

    def test_second_read_returns_same_session(self, db_session):
        first_id = cash_service.open_or_get_active_session().id
        assert cash_service.open_or_get_active_session().id == first_id
        assert db_session.query(CashDrawerSession).count() == 1

    def test_opening_float_inherits_last_physical_count(self, db_session, closed_at_523_40):
        session = cash_service.open_or_get_active_session()
        assert session.opening_float == pytest.approx(523.40)

    def test_sessions_are_per_device(self, db_session):
        front = cash_service.open_or_get_active_session("front")
        back = cash_service.open_or_get_active_session("back")
        assert front.id != back.id

    def test_database_forbids_two_open_sessions_per_device(self, db_session):
        cash_service.open_or_get_active_session()
        db_session.add(CashDrawerSession(device_id="test-device", status="OPEN", opened_at=utcnow()))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_losing_a_concurrent_open_returns_the_winner(self, db_session, monkeypatch):
        winner_id = cash_service.open_or_get_active_session().id
        real = cash_service.get_open_session
        calls = {"n": 0}

        def stale_read(device_id=None, *, lock=False):
            # The first two reads happen before the other tab's commit is visible
            calls["n"] += 1
            if calls["n"] <= 2:
                return None
            return real(device_id, lock=lock)

        monkeypatch.setattr(cash_service, "get_open_session", stale_read)

        assert cash_service.open_or_get_active_session().id == winner_id
        assert db_session.query(CashDrawerSession).filter_by(status="OPEN").count() == 1


class TestTheoreticalTotal:
    def test_worked_example_blocks_unexplained_variance(self, db_session, closed_at_523_40, make_product):
        cash_service.open_or_get_active_session()
        item = make_product(name="Groceries", price=100.0, stock=5)
        _sell(item)
        assert cash_service.record_cash_movement("out", 20, "Supplier").success

        session = cash_service.get_open_session()
        assert cash_service.compute_theoretical_total(session) == pytest.approx(603.40)

        blocked = cash_service.audit_and_close_session(600)
        assert blocked.error_code == "BUSINESS_RULE"
        assert blocked.error.details["variance"] == pytest.approx(-3.40)
        assert cash_service.get_open_session() is not None

        closed = cash_service.audit_and_close_session(600, "Gave change twice")
        assert closed.success
        assert closed.value == pytest.approx(-3.40)
        assert closed.extra["theoretical"] == pytest.approx(603.40)
        assert closed.extra["session"].status == "CLOSED"
        assert cash_service.get_open_session() is None

    def test_short_comment_is_not_enough(self, db_session, closed_at_523_40):
        cash_service.open_or_get_active_session()
        result = cash_service.audit_and_close_session(500, "oops")
        assert result.error_code == "BUSINESS_RULE"

    def test_variance_within_tolerance_needs_no_comment(self, db_session):
        cash_service.open_or_get_active_session()
        assert cash_service.record_cash_movement("in", 100, "Change fund").success

        result = cash_service.audit_and_close_session(100.50)

        assert result.success
        assert result.value == pytest.approx(0.5)

    def test_credit_down_payments_count_as_cash(self, db_session, make_product, customer):
        cash_service.open_or_get_active_session()
        tv = make_product(name="TV", price=200.0, stock=2)
        _sell(tv, method="credit", customer_id=customer.id, down_payment=50)

        totals = cash_service.compute_session_totals(cash_service.get_open_session())
        assert totals.cash_sales == 0.0
        assert totals.credit_payments == pytest.approx(50.0)

    def test_voided_sales_do_not_count(self, db_session, make_product):
        cash_service.open_or_get_active_session()
        item = make_product(price=30.0, stock=5)
        keep = _sell(item)
        voided = _sell(item)
        assert sales_service.void_sale(voided.id).success

        session = cash_service.get_open_session()
        assert cash_service.compute_theoretical_total(session) == pytest.approx(keep.total)

    def test_next_session_opens_with_the_count(self, db_session):
        cash_service.open_or_get_active_session()
        cash_service.audit_and_close_session(250, "Opening count of the till")

        session = cash_service.open_or_get_active_session()
        assert session.opening_float == pytest.approx(250.0)


class TestMovements:
    def test_movement_updates_running_totals_atomically(self, db_session):
        session_id = cash_service.open_or_get_active_session().id

        assert cash_service.record_cash_movement("entrada", 80, "Change fund").success
        assert cash_service.record_cash_movement("out", 30, "Ice delivery").success

        session = db_session.get(CashDrawerSession, session_id)
        assert session.cash_in_total == pytest.approx(80.0)
        assert session.cash_out_total == pytest.approx(30.0)
        assert db_session.query(CashMovement).filter_by(session_id=session_id).count() == 2

    def test_movement_requires_open_session(self, db_session):
        result = cash_service.record_cash_movement("in", 10, "Float")
        assert result.error_code == "BUSINESS_RULE"
        assert db_session.query(CashMovement).count() == 0

    @pytest.mark.parametrize("movement_type,amount", [("sideways", 10), ("in", 0), ("out", -5), ("in", "1e3")])
    def test_invalid_movement(self, db_session, movement_type, amount):
        cash_service.open_or_get_active_session()
        assert cash_service.record_cash_movement(movement_type, amount).error_code == "VALIDATION_ERROR"

    def test_adjust_opening_float_is_audited(self, db_session):
        cash_service.open_or_get_active_session()

        result = cash_service.adjust_opening_float(150, "Counted again")

        assert result.success
        assert result.value.opening_float == pytest.approx(150.0)
        event = db_session.query(LedgerEvent).filter_by(event_type="cash.float_adjusted").one()
        assert '"previous": 0.0' in event.payload


class TestCustomerPayments:
    def test_payment_enters_drawer_and_reduces_debt(self, db_session, make_product, customer):
        cash_service.open_or_get_active_session()
        tv = make_product(name="TV", price=200.0, stock=2)
        _sell(tv, method="credit", customer_id=customer.id, down_payment=50)

        result = customer_service.record_customer_payment(customer.id, 100, "Weekly")

        assert result.success
        payment = result.value
        assert payment.debt_before == pytest.approx(150.0)
        assert payment.debt_after == pytest.approx(50.0)
        assert db_session.get(Customer, customer.id).debt == pytest.approx(50.0)

        session = cash_service.get_open_session()
        assert session.cash_in_total == pytest.approx(100.0)
        assert cash_service.compute_theoretical_total(session) == pytest.approx(150.0)

    def test_payment_above_debt_is_rejected(self, db_session, customer):
        cash_service.open_or_get_active_session()
        customer.debt = 40.0
        db_session.commit()

        result = customer_service.record_customer_payment(customer.id, 40.01)

        assert result.error_code == "BUSINESS_RULE"
        assert db_session.get(Customer, customer.id).debt == pytest.approx(40.0)

    def test_payment_requires_open_session(self, db_session, customer):
        customer.debt = 40.0
        db_session.commit()

        result = customer_service.record_customer_payment(customer.id, 10)

        assert result.error_code == "BUSINESS_RULE"
        assert db_session.query(CashMovement).count() == 0
        assert db_session.get(Customer, customer.id).debt == pytest.approx(40.0)

    def test_zero_payment_is_invalid(self, db_session, customer):
        assert customer_service.record_customer_payment(customer.id, 0).error_code == "VALIDATION_ERROR"
