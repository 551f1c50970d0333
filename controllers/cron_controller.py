# path: controllers/cron_controller.py
from __future__ import annotations

from dataclasses import asdict

from sqlmodel import Session

from services import assignment_service, sweep_service
from services.clock import Clock


def barrer_inactivos(*, session: Session, clock: Clock):
    report = sweep_service.sweep_inactive_chats(session, now=clock.now())
    return report.as_dict()


def barrer_escalados(*, session: Session, clock: Clock):
    report = sweep_service.sweep_escalations(session, now=clock.now())
    return report.as_dict()


def despachar_cola(*, session: Session, clock: Clock):
    report = assignment_service.dispatch_queue(session, now=clock.now())
    return asdict(report)
