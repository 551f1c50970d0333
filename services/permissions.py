# path: services/permissions.py
"""
Rol del token -> identidad del motor.

Las rutas reciben directamente el RealUser u Operator del que llama,
cargado en la misma sesión del request.
"""
from __future__ import annotations

from typing import Union

from fastapi import Depends, HTTPException
from sqlmodel import Session, select

from database import get_session
from dependencies.auth import get_current_user
from models.operators import Operator
from models.real_user import RealUser
from models.users import User

ROLE_ADMIN = 1
ROLE_OPERATOR = 2
ROLE_REAL_USER = 3

PROFILE_BY_ROLE = {
    ROLE_REAL_USER: RealUser,
    ROLE_OPERATOR: Operator,
}


def require_roles(*allowed_role_ids: int):
    allowed_ids = set(int(x) for x in allowed_role_ids)

    def checker(current_user: User = Depends(get_current_user)):
        if current_user.role_id not in allowed_ids:
            raise HTTPException(status_code=403, detail="No tenés permisos para esta acción")
        return current_user

    return checker


def _profile_for(session: Session, user: User) -> Union[RealUser, Operator]:
    model = PROFILE_BY_ROLE[user.role_id]
    profile = session.exec(select(model).where(model.user_id == user.id)).first()
    if not profile:
        raise HTTPException(status_code=403, detail="El usuario no tiene perfil en el chat")
    return profile


def current_real_user(
    current_user: User = Depends(require_roles(ROLE_REAL_USER)),
    session: Session = Depends(get_session),
) -> RealUser:
    return _profile_for(session, current_user)


def current_operator(
    current_user: User = Depends(require_roles(ROLE_OPERATOR)),
    session: Session = Depends(get_session),
) -> Operator:
    return _profile_for(session, current_user)


def current_sender(
    current_user: User = Depends(require_roles(ROLE_REAL_USER, ROLE_OPERATOR)),
    session: Session = Depends(get_session),
) -> Union[RealUser, Operator]:
    """Quien escribe en un chat: el usuario real o el operador detrás del perfil."""
    return _profile_for(session, current_user)
