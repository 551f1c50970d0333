from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from controllers.chat_controller import iniciar_chat
from database import get_session
from models.real_user import RealUser
from services.clock import Clock, get_clock
from services.permissions import current_real_user

router = APIRouter(tags=["Chat"])


class StartChatRequest(BaseModel):
    fictional_profile_id: int


@router.post("/chats")
def crear_chat(
    data: StartChatRequest,
    real_user: RealUser = Depends(current_real_user),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return iniciar_chat(
        fictional_profile_id=data.fictional_profile_id,
        real_user=real_user,
        session=session,
        clock=clock,
    )
