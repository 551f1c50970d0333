# path: services/sweep_service.py
"""
Barridos programados (cron). Cada uno:
  1) lee un snapshot de candidatos
  2) actualiza fila por fila con UPDATE condicional sobre el estado del snapshot
  3) commitea por fila; si una fila falla se loguea, rollback y se sigue
Correr dos veces seguidas no vuelve a afectar las mismas filas.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func
from sqlmodel import Session, select

import config
from models.chat import Chat
from models.chat_queue import ChatQueueEntry
from models.enums import (
    LIVE_STATUSES,
    ChatFlag,
    ChatStatus,
    CloseReason,
    NotificationPriority,
    NotificationType,
)
from services.counters import increment_idle_incidents
from services.lifecycle_service import close_chat, escalate
from services.notification_service import notify_admin

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    name: str
    affected: list[int] = field(default_factory=list)
    failures: list[int] = field(default_factory=list)
    breakdown: dict[str, int] = field(default_factory=dict)

    def count(self, key: str, chat_id: int) -> None:
        self.affected.append(chat_id)
        self.breakdown[key] = self.breakdown.get(key, 0) + 1

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "affected_count": len(self.affected),
            "affected": list(self.affected),
            "failures": list(self.failures),
            "breakdown": dict(self.breakdown),
        }


def _run_row(session: Session, report: SweepReport, key: str, chat_id: int, fn: Callable[[], bool]) -> None:
    try:
        applied = fn()
        session.commit()
    except Exception:
        session.rollback()
        report.failures.append(chat_id)
        logger.error("[SWEEP] %s: fallo en chat %s (%s)", report.name, chat_id, key, exc_info=True)
        return

    if applied:
        report.count(key, chat_id)


def summary_priority(report: SweepReport) -> NotificationPriority:
    affected = len(report.affected)
    if affected > config.SWEEP_CRITICAL_THRESHOLD or report.breakdown.get(ChatFlag.QUEUE_TIMEOUT.value):
        return NotificationPriority.CRITICAL
    if affected > config.SWEEP_ALERT_THRESHOLD or report.failures:
        return NotificationPriority.HIGH
    return NotificationPriority.LOW


def _record_summary(session: Session, report: SweepReport, *, now: datetime) -> None:
    if not report.affected and not report.failures:
        logger.info("[SWEEP] %s: nada para hacer", report.name)
        return

    notify_admin(
        session,
        type=NotificationType.SWEEP_SUMMARY,
        message=f"{report.name}: {len(report.affected)} chat(s) affected, {len(report.failures)} failure(s)",
        details=report.as_dict(),
        priority=summary_priority(report),
        now=now,
    )
    session.commit()
    logger.info(
        "[SWEEP] %s: afectados=%s fallos=%s breakdown=%s",
        report.name,
        len(report.affected),
        len(report.failures),
        report.breakdown,
    )


# ---------------------------
# Inactividad
# ---------------------------

def sweep_inactive_chats(session: Session, *, now: datetime) -> SweepReport:
    report = SweepReport(name="sweep_inactive_chats")
    cutoff = now - timedelta(hours=config.INACTIVITY_TIMEOUT_HOURS)

    last_seen = func.coalesce(Chat.last_message_at, Chat.created_at)
    snapshot = session.exec(
        select(Chat.id, Chat.last_message_at)
        # idle queda estacionado por el operador: no cuenta como inactivo
        .where(Chat.status == ChatStatus.ACTIVE)
        .where(last_seen < cutoff)
        .order_by(Chat.id)
    ).all()

    for chat_id, last_message_at in snapshot:
        def _close(chat_id=chat_id, last_message_at=last_message_at) -> bool:
            chat = session.get(Chat, chat_id)
            if chat is None:
                return False
            # si entró un mensaje después del snapshot, no se cierra
            same_clock = (
                Chat.last_message_at.is_(None) if last_message_at is None else Chat.last_message_at == last_message_at
            )
            return close_chat(
                session,
                chat,
                CloseReason.INACTIVITY_TIMEOUT,
                now=now,
                expected=ChatStatus.ACTIVE,
                extra_where=(same_clock,),
            )

        _run_row(session, report, CloseReason.INACTIVITY_TIMEOUT.value, chat_id, _close)

    _record_summary(session, report, now=now)
    return report


# ---------------------------
# Escalados
# ---------------------------

def _escalate_max_reassignments(session: Session, report: SweepReport, *, now: datetime) -> None:
    snapshot = session.exec(
        select(Chat)
        .where(Chat.status.in_(LIVE_STATUSES))
        .where(Chat.assignment_count >= config.MAX_REASSIGNMENTS)
        .order_by(Chat.id)
    ).all()
    candidates = [(c.id, c.status) for c in snapshot if not c.has_flag(ChatFlag.MAX_REASSIGNMENTS_REACHED)]

    for chat_id, status in candidates:
        def _escalate(chat_id=chat_id, status=status) -> bool:
            chat = session.get(Chat, chat_id)
            return escalate(
                session,
                chat,
                ChatFlag.MAX_REASSIGNMENTS_REACHED,
                now=now,
                expected=status,
                details={"source": "sweep"},
            )

        _run_row(session, report, ChatFlag.MAX_REASSIGNMENTS_REACHED.value, chat_id, _escalate)


def _escalate_idle_operators(session: Session, report: SweepReport, *, now: datetime) -> None:
    threshold = now - timedelta(minutes=config.OPERATOR_IDLE_THRESHOLD_MINUTES)

    snapshot = session.exec(
        select(Chat)
        .where(Chat.status == ChatStatus.ACTIVE)
        .where(Chat.assigned_operator_id.is_not(None))
        .where(Chat.last_operator_activity_at < threshold)
        .where(Chat.last_user_message_at > threshold)
        .order_by(Chat.id)
    ).all()
    candidates = [
        (c.id, c.assigned_operator_id, c.last_operator_activity_at)
        for c in snapshot
        if not c.has_flag(ChatFlag.OPERATOR_IDLE)
    ]

    for chat_id, operator_id, last_activity in candidates:
        def _escalate(chat_id=chat_id, operator_id=operator_id, last_activity=last_activity) -> bool:
            chat = session.get(Chat, chat_id)
            applied = escalate(
                session,
                chat,
                ChatFlag.OPERATOR_IDLE,
                now=now,
                expected=ChatStatus.ACTIVE,
                details={
                    "source": "sweep",
                    "last_operator_activity_at": last_activity.isoformat(),
                    "idle_threshold_minutes": config.OPERATOR_IDLE_THRESHOLD_MINUTES,
                },
            )
            # el incidente se cuenta una sola vez: solo si esta corrida escaló
            if applied:
                increment_idle_incidents(session, operator_id)
            return applied

        _run_row(session, report, ChatFlag.OPERATOR_IDLE.value, chat_id, _escalate)


def _escalate_queue_timeouts(session: Session, report: SweepReport, *, now: datetime) -> None:
    cutoff = now - timedelta(minutes=config.QUEUE_TIMEOUT_MINUTES)

    snapshot = session.exec(
        select(ChatQueueEntry.chat_id, ChatQueueEntry.attempts, ChatQueueEntry.entered_queue_at)
        .where(ChatQueueEntry.entered_queue_at < cutoff)
        .where(ChatQueueEntry.attempts >= config.QUEUE_TIMEOUT_MIN_ATTEMPTS)
        .order_by(ChatQueueEntry.entered_queue_at)
    ).all()

    for chat_id, attempts, entered_at in snapshot:
        def _escalate(chat_id=chat_id, attempts=attempts, entered_at=entered_at) -> bool:
            chat = session.get(Chat, chat_id)
            if chat is None or chat.status not in LIVE_STATUSES:
                return False
            # la transición saca la entrada de la cola
            return escalate(
                session,
                chat,
                ChatFlag.QUEUE_TIMEOUT,
                now=now,
                expected=ChatStatus(chat.status),
                details={
                    "source": "sweep",
                    "attempts": attempts,
                    "queued_minutes": int((now - entered_at).total_seconds() // 60),
                },
            )

        _run_row(session, report, ChatFlag.QUEUE_TIMEOUT.value, chat_id, _escalate)


def _close_stale_escalations(session: Session, report: SweepReport, *, now: datetime) -> None:
    if config.ESCALATION_AUTO_CLOSE_DAYS <= 0:
        return

    cutoff = now - timedelta(days=config.ESCALATION_AUTO_CLOSE_DAYS)
    escalated_since = func.coalesce(Chat.escalated_at, Chat.updated_at)
    snapshot = session.exec(
        select(Chat.id)
        .where(Chat.status == ChatStatus.ESCALATED)
        .where(escalated_since < cutoff)
        .order_by(Chat.id)
    ).all()

    for chat_id in snapshot:
        def _close(chat_id=chat_id) -> bool:
            chat = session.get(Chat, chat_id)
            return close_chat(
                session,
                chat,
                CloseReason.ESCALATION_TIMEOUT,
                now=now,
                expected=ChatStatus.ESCALATED,
            )

        _run_row(session, report, CloseReason.ESCALATION_TIMEOUT.value, chat_id, _close)


def sweep_escalations(session: Session, *, now: datetime) -> SweepReport:
    report = SweepReport(name="sweep_escalations")

    _escalate_max_reassignments(session, report, now=now)
    _escalate_idle_operators(session, report, now=now)
    _escalate_queue_timeouts(session, report, now=now)
    _close_stale_escalations(session, report, now=now)

    _record_summary(session, report, now=now)
    return report
