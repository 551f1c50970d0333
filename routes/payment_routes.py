from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from controllers.payment_controller import iniciar_pago, procesar_webhook
from database import get_session
from models.real_user import RealUser
from services.clock import Clock, get_clock
from services.payment_gateway import PaystackGateway, get_payment_gateway
from services.permissions import current_real_user

router = APIRouter(prefix="/payments", tags=["Payments"])

SIGNATURE_HEADER = "x-paystack-signature"


class InitiatePaymentRequest(BaseModel):
    credits: int = Field(gt=0)
    # unidades menores (kobo)
    amount: int = Field(gt=0)


@router.post("/initiate")
def iniciar(
    data: InitiatePaymentRequest,
    real_user: RealUser = Depends(current_real_user),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return iniciar_pago(credits=data.credits, amount=data.amount, real_user=real_user, session=session, clock=clock)


@router.post("/webhook")
async def webhook(
    request: Request,
    session: Session = Depends(get_session),
    gateway: PaystackGateway = Depends(get_payment_gateway),
    clock: Clock = Depends(get_clock),
):
    # la firma se calcula sobre el body crudo
    raw_body = await request.body()
    # DB + verify contra Paystack son bloqueantes: fuera del event loop
    return await run_in_threadpool(
        procesar_webhook,
        raw_body=raw_body,
        signature=request.headers.get(SIGNATURE_HEADER),
        session=session,
        gateway=gateway,
        clock=clock,
    )
