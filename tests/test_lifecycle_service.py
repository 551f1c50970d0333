from datetime import timedelta

import pytest
from sqlmodel import Session, select

import models
from models.enums import ChatFlag, ChatStatus, CloseReason, SenderType
from services import lifecycle_service, queue_manager
from services.errors import ChatNotWritable, InvalidTransition


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (ChatStatus.ACTIVE, ChatStatus.IDLE, True),
        (ChatStatus.IDLE, ChatStatus.ACTIVE, True),
        (ChatStatus.ESCALATED, ChatStatus.ACTIVE, True),
        (ChatStatus.ESCALATED, ChatStatus.IDLE, False),
        (ChatStatus.CLOSED, ChatStatus.ACTIVE, False),
        (ChatStatus.CLOSED, ChatStatus.CLOSED, False),
    ],
)
def test_allowed_transitions(current, target, allowed):
    assert lifecycle_service.can_transition(current, target) is allowed


def _live_chat(factory, *, status=ChatStatus.ACTIVE):
    operator = factory.operator(current=1)
    chat = factory.chat(
        factory.real_user(),
        factory.profile(),
        status=status,
        assigned_operator_id=operator.id,
        assignment_count=1,
        previous_operator_ids=[operator.id],
    )
    return chat, operator


def test_operator_parks_chat_as_idle(session, factory, clock):
    chat, operator = _live_chat(factory)

    lifecycle_service.mark_idle(session, chat.id, operator_id=operator.id, now=clock.now())

    session.refresh(chat)
    session.refresh(operator)
    assert chat.status == ChatStatus.IDLE
    # idle sigue ocupando al operador
    assert operator.current_chat_count == 1


def test_timestamps_round_trip_as_naive_utc(engine, session, factory, clock):
    chat, operator = _live_chat(factory)
    lifecycle_service.mark_idle(session, chat.id, operator_id=operator.id, now=clock.now())

    with Session(engine) as fresh:
        stored = fresh.get(models.Chat, chat.id)
        assert stored.created_at == clock.now()
        assert stored.last_operator_activity_at == clock.now()
        assert stored.created_at.tzinfo is None
        assert stored.last_operator_activity_at.tzinfo is None


def test_only_assigned_operator_can_park(session, factory, clock):
    chat, _ = _live_chat(factory)
    other = factory.operator()

    with pytest.raises(ChatNotWritable):
        lifecycle_service.mark_idle(session, chat.id, operator_id=other.id, now=clock.now())


def test_new_message_reactivates_idle_chat(session, factory, clock):
    chat, _ = _live_chat(factory, status=ChatStatus.IDLE)
    later = clock.advance(minutes=3)

    lifecycle_service.record_message(session, chat, SenderType.REAL, credits_charged=2, now=later)
    session.commit()

    session.refresh(chat)
    assert chat.status == ChatStatus.ACTIVE
    assert chat.last_message_at == later
    assert chat.last_user_message_at == later
    assert chat.user_message_count == 1
    assert chat.message_count == 1
    assert chat.total_credits_spent == 2


def test_operator_message_resets_operator_clock(session, factory, clock):
    chat, _ = _live_chat(factory)

    lifecycle_service.record_message(session, chat, SenderType.FICTIONAL, credits_charged=0, now=clock.now())
    session.commit()

    session.refresh(chat)
    assert chat.last_operator_activity_at == clock.now()
    assert chat.last_user_message_at is None
    assert chat.user_message_count == 0


def test_admin_close_releases_operator(session, factory, clock):
    chat, operator = _live_chat(factory)

    lifecycle_service.admin_close(session, chat.id, admin_id=1, now=clock.now())

    session.refresh(chat)
    session.refresh(operator)
    assert chat.status == ChatStatus.CLOSED
    assert chat.close_reason == CloseReason.ADMIN_CLOSED
    assert chat.closed_at == clock.now()
    assert operator.current_chat_count == 0


def test_closing_queued_chat_removes_entry(session, factory, clock):
    chat = factory.chat(factory.real_user(), factory.profile())
    queue_manager.enqueue(session, chat, now=clock.now())
    session.commit()

    lifecycle_service.admin_close(session, chat.id, admin_id=1, now=clock.now())

    assert session.exec(select(models.ChatQueueEntry)).all() == []


def test_closed_chat_is_immutable(session, factory, clock):
    chat, _ = _live_chat(factory)
    lifecycle_service.admin_close(session, chat.id, admin_id=1, now=clock.now())

    with pytest.raises(InvalidTransition):
        lifecycle_service.admin_close(session, chat.id, admin_id=1, now=clock.now())

    session.refresh(chat)
    with pytest.raises(ChatNotWritable):
        lifecycle_service.record_message(session, chat, SenderType.REAL, credits_charged=0, now=clock.now())


def test_transition_loses_race_without_clobbering(session, factory, clock):
    chat, operator = _live_chat(factory)

    # el snapshot dice idle pero el chat ya volvió a active
    applied = lifecycle_service.close_chat(
        session, chat, CloseReason.INACTIVITY_TIMEOUT, now=clock.now(), expected=ChatStatus.IDLE
    )
    session.commit()

    assert applied is False
    session.refresh(chat)
    session.refresh(operator)
    assert chat.status == ChatStatus.ACTIVE
    assert operator.current_chat_count == 1


def test_escalated_chat_stops_occupying_operator(session, factory, clock):
    chat, operator = _live_chat(factory)

    assert lifecycle_service.escalate(session, chat, ChatFlag.OPERATOR_IDLE, now=clock.now() + timedelta(minutes=1))
    session.commit()

    session.refresh(chat)
    session.refresh(operator)
    assert chat.status == ChatStatus.ESCALATED
    assert chat.flags == [ChatFlag.OPERATOR_IDLE.value]
    assert operator.current_chat_count == 0
