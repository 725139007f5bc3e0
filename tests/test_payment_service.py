"""Payment creation, cursor pagination and the status transition engine."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from payrail.common.cursor import encode_cursor
from payrail.common.errors import IdempotencyConflict, InvalidTransition, NotFound, TransientError, ValidationError
from payrail.services.payments.batch import create_guarded
from payrail.services.payments.models import IdempotencyRecord, Payment, PaymentHistory
from payrail.services.payments.repository import PaymentRepository
from payrail.services.payments.service import STORE_UNAVAILABLE


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def _history(session_factory, payment_id):
    with session_factory() as db:
        return PaymentRepository(db).history_for(payment_id)


def _seed(session_factory, payment_request, labels):
    """Insert payments oldest-to-newest at one-second spacing."""

    base = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
    created = {}
    with session_factory() as db:
        repo = PaymentRepository(db)
        for offset, label in enumerate(labels):
            req = payment_request(description=label)
            payment = repo.create(
                id=str(uuid4()),
                description=req.description,
                due_date=req.due_date,
                amount_cents=req.amount_cents,
                currency=req.currency,
                payer_name=req.payer.name,
                payer_email=str(req.payer.email),
                status="pending",
                checkout_url="https://checkout.test/pay/seed",
                idempotency_key=str(uuid4()),
                request_hash="0" * 64,
                created_at=base + timedelta(seconds=offset),
            )
            created[label] = payment
        db.commit()
    return created


def test_create_payment_starts_pending(payment_service, payment_request, session_factory):
    key = str(uuid4())

    created = payment_service.create_payment(payment_request(), key)

    assert created.status == "pending"
    assert created.checkout_url == f"https://checkout.test/pay/{created.payment_id}"
    with session_factory() as db:
        payment = db.get(Payment, created.payment_id)
        assert payment.idempotency_key == key
        assert payment.amount_cents == 12500
        assert payment.payer_email == "ada@example.com"


def test_duplicate_key_returns_existing_payment(payment_service, payment_request, session_factory):
    key = str(uuid4())

    first = payment_service.create_payment(payment_request(), key)
    second = payment_service.create_payment(payment_request(), key)

    assert second.payment_id == first.payment_id
    assert _count(session_factory, Payment) == 1


def test_listing_pages_without_overlap_or_gap(payment_service, payment_request, session_factory):
    created = _seed(session_factory, payment_request, ["A", "B", "C", "D", "E"])

    first = payment_service.list_payments(limit=2)
    assert [item.description for item in first.items] == ["E", "D"]
    assert first.next_cursor == encode_cursor(created["D"].created_at)
    assert first.next_cursor == first.items[-1].created_at

    second = payment_service.list_payments(limit=2, cursor=first.next_cursor)
    assert [item.description for item in second.items] == ["C", "B"]

    third = payment_service.list_payments(limit=2, cursor=second.next_cursor)
    assert [item.description for item in third.items] == ["A"]
    assert third.next_cursor is None


def test_exact_fit_page_has_no_cursor(payment_service, payment_request, session_factory):
    _seed(session_factory, payment_request, ["A", "B"])

    page = payment_service.list_payments(limit=2)

    assert len(page.items) == 2
    assert page.next_cursor is None


def test_listing_filters_by_status(payment_service, payment_request, session_factory):
    created = _seed(session_factory, payment_request, ["A", "B", "C"])
    payment_service.transition_status(created["B"].id, "paid")

    page = payment_service.list_payments(status="paid")

    assert [item.description for item in page.items] == ["B"]


def test_listing_caps_limit_and_rejects_bad_input(payment_service, payment_request, session_factory):
    _seed(session_factory, payment_request, [f"P{i}" for i in range(3)])

    assert len(payment_service.list_payments(limit=1000).items) == 3
    assert len(payment_service.list_payments().items) == 3
    with pytest.raises(ValidationError):
        payment_service.list_payments(limit=0)
    with pytest.raises(ValidationError):
        payment_service.list_payments(cursor="yesterday")


def test_pending_to_paid_to_reversed_writes_one_history_row_each(payment_service, payment_request, session_factory):
    created = payment_service.create_payment(payment_request(), str(uuid4()))

    paid = payment_service.transition_status(created.payment_id, "paid", "provider confirmed")
    assert (paid.old_status, paid.new_status) == ("pending", "paid")
    assert len(_history(session_factory, created.payment_id)) == 1

    payment_service.transition_status(created.payment_id, "reversed", "chargeback")
    history = _history(session_factory, created.payment_id)
    assert [(h.old_status, h.new_status, h.reason) for h in history] == [
        ("pending", "paid", "provider confirmed"),
        ("paid", "reversed", "chargeback"),
    ]
    with session_factory() as db:
        payment = db.get(Payment, created.payment_id)
        assert payment.status == "reversed"
        assert payment.state_version == 2


@pytest.mark.parametrize(
    "path,requested",
    [
        ([], "reversed"),
        (["paid"], "paid"),
        (["paid", "reversed"], "paid"),
        (["paid", "reversed"], "pending"),
    ],
)
def test_disallowed_transitions_change_nothing(payment_service, payment_request, session_factory, path, requested):
    created = payment_service.create_payment(payment_request(), str(uuid4()))
    for status in path:
        payment_service.transition_status(created.payment_id, status)

    with pytest.raises(InvalidTransition):
        payment_service.transition_status(created.payment_id, requested)

    assert len(_history(session_factory, created.payment_id)) == len(path)


def test_transition_unknown_payment_is_not_found(payment_service, session_factory):
    with pytest.raises(NotFound):
        payment_service.transition_status(str(uuid4()), "paid")
    assert _count(session_factory, PaymentHistory) == 0


def test_get_payment_includes_history(payment_service, payment_request):
    created = payment_service.create_payment(payment_request(), str(uuid4()))
    payment_service.transition_status(created.payment_id, "paid", "settled")

    detail = payment_service.get_payment(created.payment_id)

    assert detail.status == "paid"
    assert [(h.old_status, h.new_status) for h in detail.history] == [("pending", "paid")]
    with pytest.raises(NotFound):
        payment_service.get_payment(str(uuid4()))


def test_duplicate_key_with_other_payload_is_conflict(payment_service, payment_request, session_factory):
    key = str(uuid4())
    first = payment_service.create_payment(payment_request(amount_cents=100), key)

    with pytest.raises(IdempotencyConflict):
        payment_service.create_payment(payment_request(amount_cents=999999), key)

    with session_factory() as db:
        assert db.get(Payment, first.payment_id).amount_cents == 100
    assert _count(session_factory, Payment) == 1


@pytest.mark.asyncio
async def test_guarded_create_without_stored_response_checks_the_payment_row(
    coordinator, payment_service, payment_request, session_factory
):
    # The payment exists but its response was never stored under the key.
    key = str(uuid4())
    original = payment_service.create_payment(payment_request(amount_cents=100), key)

    with pytest.raises(IdempotencyConflict):
        await create_guarded(coordinator, payment_service, payment_request(amount_cents=999999), key)
    assert _count(session_factory, IdempotencyRecord) == 0

    retried = await create_guarded(coordinator, payment_service, payment_request(amount_cents=100), key)

    assert retried.replayed is False
    assert retried.response.payment_id == original.payment_id
    with session_factory() as db:
        record = db.execute(select(IdempotencyRecord).where(IdempotencyRecord.key == key)).scalar_one()
        assert record.request_hash == retried.request_hash


def test_store_outage_is_transient_without_driver_details(monkeypatch, payment_service, payment_request):
    def unavailable(self, **fields):
        raise OperationalError(
            "INSERT INTO payments",
            {},
            Exception('password authentication failed for user "payrail" host 10.1.2.3'),
        )

    monkeypatch.setattr(PaymentRepository, "create", unavailable)

    with pytest.raises(TransientError) as excinfo:
        payment_service.create_payment(payment_request(), str(uuid4()))

    assert excinfo.value.message == STORE_UNAVAILABLE
    assert "10.1.2.3" not in str(excinfo.value)


def test_failed_history_write_leaves_status_unchanged(monkeypatch, payment_service, payment_request, session_factory):
    created = payment_service.create_payment(payment_request(), str(uuid4()))

    def broken_history(self, payment_id, old_status, new_status, reason):
        raise RuntimeError("history insert failed")

    monkeypatch.setattr(PaymentRepository, "add_history", broken_history)

    with pytest.raises(RuntimeError):
        payment_service.transition_status(created.payment_id, "paid")

    with session_factory() as db:
        payment = db.get(Payment, created.payment_id)
        assert payment.status == "pending"
        assert payment.state_version == 0
    assert _count(session_factory, PaymentHistory) == 0


def test_losing_a_concurrent_transition_names_the_winning_status(
    monkeypatch, payment_service, payment_request, session_factory
):
    created = payment_service.create_payment(payment_request(), str(uuid4()))
    original_update = PaymentRepository.update

    def racing_update(self, payment_id, fields, expected_status=None, expected_version=None):
        # Another writer commits between our read and our guarded update.
        with session_factory() as other:
            other.execute(
                update(Payment)
                .where(Payment.id == payment_id)
                .values(status="paid", state_version=Payment.state_version + 1)
            )
            other.commit()
        return original_update(self, payment_id, fields, expected_status, expected_version)

    monkeypatch.setattr(PaymentRepository, "update", racing_update)

    with pytest.raises(InvalidTransition) as excinfo:
        payment_service.transition_status(created.payment_id, "paid", "late webhook")

    assert excinfo.value.current == "paid"
    with session_factory() as db:
        assert db.get(Payment, created.payment_id).state_version == 1
    assert _count(session_factory, PaymentHistory) == 0
