from datetime import timedelta

from sqlmodel import select

import config
import models
from models.enums import ChatFlag, ChatStatus, CloseReason, NotificationPriority, NotificationType
from services import queue_manager, sweep_service

from conftest import NOON


def _summaries(session):
    return session.exec(
        select(models.AdminNotification).where(models.AdminNotification.type == NotificationType.SWEEP_SUMMARY)
    ).all()


def test_inactive_chats_closed_exactly_once(session, factory, clock):
    operator = factory.operator(current=2)
    stale_active = factory.chat(
        factory.real_user(),
        factory.profile(),
        assigned_operator_id=operator.id,
        last_message_at=NOON - timedelta(hours=25),
    )
    stale_idle = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=ChatStatus.IDLE,
        assigned_operator_id=operator.id,
        last_message_at=NOON - timedelta(hours=30),
    )
    fresh = factory.chat(factory.real_user(), factory.profile(), last_message_at=NOON - timedelta(hours=2))

    first = sweep_service.sweep_inactive_chats(session, now=clock.now())
    second = sweep_service.sweep_inactive_chats(session, now=clock.now())

    assert first.affected == [stale_active.id]
    assert second.affected == []

    session.refresh(stale_active)
    assert stale_active.status == ChatStatus.CLOSED
    assert stale_active.close_reason == CloseReason.INACTIVITY_TIMEOUT
    session.refresh(fresh)
    assert fresh.status == ChatStatus.ACTIVE

    # el idle sigue asignado y ocupando al operador
    session.refresh(stale_idle)
    assert stale_idle.status == ChatStatus.IDLE
    assert stale_idle.closed_at is None
    session.refresh(operator)
    assert operator.current_chat_count == 1
    # solo la corrida con cambios deja resumen
    assert len(_summaries(session)) == 1


def test_inactive_sweep_leaves_idle_chats_alone(session, factory, clock):
    operator = factory.operator(current=1)
    parked = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=ChatStatus.IDLE,
        assigned_operator_id=operator.id,
        last_message_at=NOON - timedelta(hours=30),
    )

    report = sweep_service.sweep_inactive_chats(session, now=clock.now())

    assert report.affected == []
    session.refresh(parked)
    assert parked.status == ChatStatus.IDLE
    assert parked.close_reason is None
    assert _summaries(session) == []


def test_inactive_sweep_skips_chat_with_new_message(session, factory, clock):
    chat = factory.chat(factory.real_user(), factory.profile(), last_message_at=NOON - timedelta(hours=25))
    snapshot_at = chat.last_message_at

    # un mensaje llega entre el snapshot y el update
    applied = sweep_service.close_chat(
        session,
        chat,
        CloseReason.INACTIVITY_TIMEOUT,
        now=clock.now(),
        expected=ChatStatus.ACTIVE,
        extra_where=(models.Chat.last_message_at == snapshot_at - timedelta(seconds=1),),
    )
    session.commit()

    assert applied is False
    session.refresh(chat)
    assert chat.status == ChatStatus.ACTIVE


def test_operator_idle_escalation_counts_incident_once(session, factory, clock):
    operator = factory.operator(current=1)
    chat = factory.chat(
        factory.real_user(),
        factory.profile(),
        assigned_operator_id=operator.id,
        assignment_count=1,
        last_operator_activity_at=NOON - timedelta(minutes=11),
        last_user_message_at=NOON - timedelta(minutes=5),
        last_message_at=NOON - timedelta(minutes=5),
    )

    report = sweep_service.sweep_escalations(session, now=clock.now())
    sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == [chat.id]
    assert report.breakdown == {ChatFlag.OPERATOR_IDLE.value: 1}
    session.refresh(chat)
    session.refresh(operator)
    assert chat.status == ChatStatus.ESCALATED
    assert chat.has_flag(ChatFlag.OPERATOR_IDLE)
    assert operator.idle_incidents == 1
    assert operator.current_chat_count == 0


def test_operator_idle_requires_recent_user_message(session, factory, clock):
    operator = factory.operator(current=1)
    chat = factory.chat(
        factory.real_user(),
        factory.profile(),
        assigned_operator_id=operator.id,
        last_operator_activity_at=NOON - timedelta(minutes=30),
        last_user_message_at=NOON - timedelta(minutes=20),
    )

    report = sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == []
    session.refresh(chat)
    assert chat.status == ChatStatus.ACTIVE


def test_max_reassignment_escalation_skips_flagged_chats(session, factory, clock):
    operator = factory.operator(current=2)
    exhausted = factory.chat(
        factory.real_user(), factory.profile(), assigned_operator_id=operator.id, assignment_count=3
    )
    resolved = factory.chat(
        factory.real_user(),
        factory.profile(),
        assigned_operator_id=operator.id,
        assignment_count=3,
        flags=[ChatFlag.MAX_REASSIGNMENTS_REACHED.value],
    )

    report = sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == [exhausted.id]
    session.refresh(resolved)
    assert resolved.status == ChatStatus.ACTIVE


def test_queue_timeout_escalates_and_dequeues(session, factory, clock):
    chat = factory.chat(factory.real_user(), factory.profile())
    entry = queue_manager.enqueue(session, chat, now=NOON - timedelta(minutes=31))
    entry.attempts = config.QUEUE_TIMEOUT_MIN_ATTEMPTS
    session.add(entry)
    young = factory.chat(factory.real_user(), factory.profile())
    queue_manager.enqueue(session, young, now=NOON - timedelta(minutes=5))
    session.commit()

    report = sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == [chat.id]
    session.refresh(chat)
    assert chat.status == ChatStatus.ESCALATED
    assert chat.has_flag(ChatFlag.QUEUE_TIMEOUT)
    remaining = session.exec(select(models.ChatQueueEntry)).all()
    assert [e.chat_id for e in remaining] == [young.id]

    escalation = session.exec(
        select(models.AdminNotification).where(models.AdminNotification.type == NotificationType.CHAT_ESCALATION)
    ).one()
    assert escalation.priority == NotificationPriority.CRITICAL
    assert _summaries(session)[0].priority == NotificationPriority.CRITICAL


def test_queue_timeout_needs_enough_attempts(session, factory, clock):
    chat = factory.chat(factory.real_user(), factory.profile())
    queue_manager.enqueue(session, chat, now=NOON - timedelta(hours=2))
    session.commit()

    report = sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == []


def test_stale_escalations_auto_close(session, factory, clock):
    old = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=ChatStatus.ESCALATED,
        escalated_at=NOON - timedelta(days=config.ESCALATION_AUTO_CLOSE_DAYS, minutes=1),
    )
    recent = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=ChatStatus.ESCALATED,
        escalated_at=NOON - timedelta(days=1),
    )

    report = sweep_service.sweep_escalations(session, now=clock.now())

    assert report.affected == [old.id]
    session.refresh(old)
    session.refresh(recent)
    assert old.status == ChatStatus.CLOSED
    assert old.close_reason == CloseReason.ESCALATION_TIMEOUT
    assert recent.status == ChatStatus.ESCALATED


def test_stale_escalations_disabled_with_zero_days(session, factory, clock, monkeypatch):
    monkeypatch.setattr(config, "ESCALATION_AUTO_CLOSE_DAYS", 0)
    old = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=ChatStatus.ESCALATED,
        escalated_at=NOON - timedelta(days=60),
    )

    sweep_service.sweep_escalations(session, now=clock.now())

    session.refresh(old)
    assert old.status == ChatStatus.ESCALATED


def test_summary_priority_thresholds():
    report = sweep_service.SweepReport(name="x")
    assert sweep_service.summary_priority(report) == NotificationPriority.LOW

    report.failures.append(1)
    assert sweep_service.summary_priority(report) == NotificationPriority.HIGH

    big = sweep_service.SweepReport(name="x", affected=list(range(config.SWEEP_CRITICAL_THRESHOLD + 1)))
    assert sweep_service.summary_priority(big) == NotificationPriority.CRITICAL

    queue = sweep_service.SweepReport(name="x", affected=[1], breakdown={ChatFlag.QUEUE_TIMEOUT.value: 1})
    assert sweep_service.summary_priority(queue) == NotificationPriority.CRITICAL


def test_row_failure_does_not_abort_batch(session, factory, clock, monkeypatch):
    first = factory.chat(factory.real_user(), factory.profile(), last_message_at=NOON - timedelta(hours=30))
    second = factory.chat(factory.real_user(), factory.profile(), last_message_at=NOON - timedelta(hours=30))
    original = sweep_service.close_chat

    def flaky_close(session, chat, *args, **kwargs):
        if chat.id == first.id:
            raise RuntimeError("db hiccup")
        return original(session, chat, *args, **kwargs)

    monkeypatch.setattr(sweep_service, "close_chat", flaky_close)

    report = sweep_service.sweep_inactive_chats(session, now=clock.now())

    assert report.failures == [first.id]
    assert report.affected == [second.id]
    assert _summaries(session)[0].priority == NotificationPriority.HIGH
