from fastapi import APIRouter, Depends
from sqlmodel import Session

from controllers.cron_controller import barrer_escalados, barrer_inactivos, despachar_cola
from database import get_session
from dependencies.cron import verify_cron_secret
from services.clock import Clock, get_clock

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


# cada hora
@router.post("/sweep-inactive-chats")
def sweep_inactivos(session: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    return barrer_inactivos(session=session, clock=clock)


# cada 15 minutos
@router.post("/sweep-escalations")
def sweep_escalados(session: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    return barrer_escalados(session=session, clock=clock)


# cada minuto
@router.post("/dispatch-queue")
def dispatch(session: Session = Depends(get_session), clock: Clock = Depends(get_clock)):
    return despachar_cola(session=session, clock=clock)
