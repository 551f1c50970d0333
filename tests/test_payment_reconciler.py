import json

import httpx
import pytest
from sqlmodel import select

import config
import models
from models.enums import NotificationType, TransactionStatus
from services import payment_reconciler
from services.errors import InvalidWebhookPayload, PaymentGatewayError, WebhookVerificationError
from services.payment_gateway import GatewayVerification, PaystackGateway, sign_payload, verify_signature

SECRET = "sk_test_webhook"


@pytest.fixture(autouse=True)
def _paystack_secret(monkeypatch):
    monkeypatch.setattr(config, "PAYSTACK_SECRET_KEY", SECRET)


def _body(reference, event="charge.success", **extra):
    return json.dumps({"event": event, "data": {"reference": reference, **extra}}).encode("utf-8")


def _deliver(session, gateway, clock, raw_body, signature=None):
    return payment_reconciler.handle_webhook(
        session,
        raw_body=raw_body,
        signature=signature if signature is not None else sign_payload(raw_body, SECRET),
        gateway=gateway,
        now=clock.now(),
    )


def _tx(session, reference):
    return session.exec(select(models.Transaction).where(models.Transaction.provider_reference == reference)).one()


def test_signature_roundtrip():
    body = b'{"event":"charge.success"}'
    assert verify_signature(body, sign_payload(body, SECRET), SECRET)
    assert not verify_signature(body, sign_payload(body, "other"), SECRET)
    assert not verify_signature(body, None, SECRET)


def test_invalid_signature_is_rejected_before_any_state(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    gateway.set("ref_bad", TransactionStatus.SUCCESS, user_id=user.id, credits=50)

    with pytest.raises(WebhookVerificationError):
        _deliver(session, gateway, clock, _body("ref_bad"), signature="deadbeef")

    assert gateway.calls == []
    assert session.exec(select(models.Transaction)).all() == []


def test_repeated_signature_failures_alert_admins(session, gateway, clock):
    for _ in range(config.WEBHOOK_FAILURE_ALERT_THRESHOLD):
        with pytest.raises(WebhookVerificationError):
            _deliver(session, gateway, clock, _body("ref_x"), signature="nope")
        clock.advance(minutes=1)

    alerts = session.exec(
        select(models.AdminNotification).where(
            models.AdminNotification.type == NotificationType.WEBHOOK_VERIFICATION_FAILED
        )
    ).all()
    assert len(alerts) == 1


def test_unhandled_event_is_ignored(session, gateway, clock):
    ack = _deliver(session, gateway, clock, _body("ref_t", event="transfer.success"))

    assert ack.outcome == payment_reconciler.WebhookOutcome.IGNORED
    assert gateway.calls == []


def test_success_webhook_credits_once_across_redeliveries(session, factory, gateway, clock):
    user = factory.real_user(credits=5)
    gateway.set("ref_ok", TransactionStatus.SUCCESS, amount=250000, user_id=user.id, credits=100)
    raw = _body("ref_ok", amount=1)  # el monto del payload se ignora

    outcomes = [_deliver(session, gateway, clock, raw).outcome for _ in range(4)]

    assert outcomes[0] == payment_reconciler.WebhookOutcome.CREDITED
    assert outcomes[1:] == [payment_reconciler.WebhookOutcome.DUPLICATE] * 3

    session.refresh(user)
    assert user.credits == 105
    assert user.total_spent == 2500

    tx = _tx(session, "ref_ok")
    assert tx.status == TransactionStatus.SUCCESS
    assert tx.webhook_received_count == 4
    assert tx.amount == 250000
    # solo la primera entrega consulta al gateway
    assert gateway.calls == ["ref_ok"]


def test_initiated_payment_is_credited_by_webhook(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.SUCCESS, amount=90000, user_id=user.id, credits=30)

    ack = _deliver(session, gateway, clock, _body(tx.provider_reference))

    assert ack.transaction_id == tx.id
    session.refresh(user)
    assert user.credits == 30


def test_failed_payment_transitions_once(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.FAILED, amount=90000, gateway_status="abandoned")

    first = _deliver(session, gateway, clock, _body(tx.provider_reference, event="charge.failed"))
    second = _deliver(session, gateway, clock, _body(tx.provider_reference, event="charge.failed"))

    assert first.outcome == payment_reconciler.WebhookOutcome.FAILED
    assert second.outcome == payment_reconciler.WebhookOutcome.FAILED
    session.refresh(tx)
    assert tx.status == TransactionStatus.FAILED
    assert tx.webhook_received_count == 2
    session.refresh(user)
    assert user.credits == 0


def test_gateway_still_pending_keeps_transaction_pending(session, factory, gateway, clock):
    user = factory.real_user()
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())

    ack = _deliver(session, gateway, clock, _body(tx.provider_reference))

    assert ack.outcome == payment_reconciler.WebhookOutcome.PENDING
    session.refresh(tx)
    assert tx.status == TransactionStatus.PENDING


def test_unreachable_gateway_commits_nothing(session, factory, gateway, clock):
    user = factory.real_user()
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    gateway.unreachable = True

    with pytest.raises(PaymentGatewayError):
        _deliver(session, gateway, clock, _body(tx.provider_reference))

    session.refresh(tx)
    assert tx.webhook_received_count == 0
    assert tx.status == TransactionStatus.PENDING


def test_amount_mismatch_goes_to_manual_review(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.SUCCESS, amount=100, user_id=user.id, credits=30)

    ack = _deliver(session, gateway, clock, _body(tx.provider_reference))

    assert ack.outcome == payment_reconciler.WebhookOutcome.MANUAL_REVIEW
    session.refresh(tx)
    session.refresh(user)
    assert tx.status == TransactionStatus.PENDING
    assert tx.needs_manual_review is True
    assert "amount mismatch" in tx.review_reason
    assert user.credits == 0

    notification = session.exec(
        select(models.AdminNotification).where(models.AdminNotification.type == NotificationType.PAYMENT_MANUAL_REVIEW)
    ).one()
    assert notification.details["transaction_id"] == tx.id


def test_success_for_failed_transaction_goes_to_manual_review(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.FAILED, amount=90000)
    _deliver(session, gateway, clock, _body(tx.provider_reference, event="charge.failed"))

    gateway.set(tx.provider_reference, TransactionStatus.SUCCESS, amount=90000, user_id=user.id, credits=30)
    ack = _deliver(session, gateway, clock, _body(tx.provider_reference))

    assert ack.outcome == payment_reconciler.WebhookOutcome.MANUAL_REVIEW
    session.refresh(user)
    assert user.credits == 0


def _answer_with_other_reference(gateway, asked, answered, *, user_id, amount):
    gateway.responses[asked] = GatewayVerification(
        reference=answered,
        status=TransactionStatus.SUCCESS,
        amount=amount,
        gateway_status="success",
        real_user_id=user_id,
        credits=30,
        raw={"reference": answered, "status": "success"},
    )


def test_unknown_reference_answered_for_another_is_rejected(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    _answer_with_other_reference(gateway, "ref_a", "REF_A", user_id=user.id, amount=90000)

    with pytest.raises(InvalidWebhookPayload):
        _deliver(session, gateway, clock, _body("ref_a"))

    assert session.exec(select(models.Transaction)).all() == []
    session.refresh(user)
    assert user.credits == 0


def test_known_reference_answered_for_another_goes_to_manual_review(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    _answer_with_other_reference(
        gateway, tx.provider_reference, tx.provider_reference.upper(), user_id=user.id, amount=90000
    )

    ack = _deliver(session, gateway, clock, _body(tx.provider_reference))

    assert ack.outcome == payment_reconciler.WebhookOutcome.MANUAL_REVIEW
    assert ack.transaction_id == tx.id
    session.refresh(tx)
    session.refresh(user)
    assert tx.status == TransactionStatus.PENDING
    assert tx.needs_manual_review is True
    assert user.credits == 0
    assert len(session.exec(select(models.Transaction)).all()) == 1


def test_reconcile_with_mismatched_reference_goes_to_manual_review(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=30, amount=90000, now=clock.now())
    _answer_with_other_reference(gateway, tx.provider_reference, "ref_other", user_id=user.id, amount=90000)

    result = payment_reconciler.reconcile(session, transaction_id=tx.id, actor_id=1, gateway=gateway, now=clock.now())

    assert result.outcome == payment_reconciler.ReconciliationOutcome.MANUAL_REVIEW
    session.refresh(user)
    assert user.credits == 0


def test_reconcile_credits_stuck_transaction(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    admin = factory.admin()
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=40, amount=120000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.SUCCESS, amount=120000, user_id=user.id, credits=40)

    result = payment_reconciler.reconcile(
        session, transaction_id=tx.id, actor_id=admin.id, gateway=gateway, now=clock.now()
    )
    again = payment_reconciler.reconcile(
        session, transaction_id=tx.id, actor_id=admin.id, gateway=gateway, now=clock.now()
    )

    assert result.outcome == payment_reconciler.ReconciliationOutcome.CREDITED
    assert result.transaction.reconciled_by == admin.id
    assert again.outcome == payment_reconciler.ReconciliationOutcome.ALREADY_SUCCESSFUL
    session.refresh(user)
    assert user.credits == 40


def test_reconcile_still_pending(session, factory, gateway, clock):
    user = factory.real_user()
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=40, amount=120000, now=clock.now())

    result = payment_reconciler.reconcile(session, transaction_id=tx.id, actor_id=1, gateway=gateway, now=clock.now())

    assert result.outcome == payment_reconciler.ReconciliationOutcome.STILL_PENDING
    assert result.transaction.reconciled_by == 1


def test_reconcile_can_resolve_failed_transaction(session, factory, gateway, clock):
    user = factory.real_user(credits=0)
    tx = payment_reconciler.initiate_payment(session, real_user_id=user.id, credits=40, amount=120000, now=clock.now())
    gateway.set(tx.provider_reference, TransactionStatus.FAILED, amount=120000)
    payment_reconciler.reconcile(session, transaction_id=tx.id, actor_id=1, gateway=gateway, now=clock.now())

    gateway.set(tx.provider_reference, TransactionStatus.SUCCESS, amount=120000, user_id=user.id, credits=40)
    result = payment_reconciler.reconcile(session, transaction_id=tx.id, actor_id=1, gateway=gateway, now=clock.now())

    assert result.outcome == payment_reconciler.ReconciliationOutcome.CREDITED
    session.refresh(user)
    assert user.credits == 40


def test_paystack_gateway_maps_verify_response():
    def handler(request):
        assert request.url.path == "/transaction/verify/ref_1"
        assert request.headers["Authorization"] == "Bearer sk_live"
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "reference": "ref_1",
                    "status": "success",
                    "amount": 50000,
                    "metadata": {"userId": "12", "credits": 100},
                },
            },
        )

    gw = PaystackGateway("sk_live", base_url="https://paystack.test", transport=httpx.MockTransport(handler))
    verification = gw.verify_transaction("ref_1")

    assert verification.status == TransactionStatus.SUCCESS
    assert verification.amount == 50000
    assert verification.real_user_id == 12
    assert verification.credits == 100


@pytest.mark.parametrize("gateway_status,expected", [("abandoned", TransactionStatus.FAILED), ("ongoing", TransactionStatus.PENDING)])
def test_paystack_gateway_status_mapping(gateway_status, expected):
    def handler(request):
        return httpx.Response(200, json={"status": True, "data": {"reference": "r", "status": gateway_status}})

    gw = PaystackGateway("sk", base_url="https://paystack.test", transport=httpx.MockTransport(handler))

    assert gw.verify_transaction("r").status == expected


def test_paystack_gateway_errors_become_gateway_error():
    def handler(request):
        return httpx.Response(500, json={"status": False})

    gw = PaystackGateway("sk", base_url="https://paystack.test", transport=httpx.MockTransport(handler))

    with pytest.raises(PaymentGatewayError):
        gw.verify_transaction("r")
