# path: dependencies/auth.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlmodel import Session

import config
from database import get_session
from models.users import User

# los tokens los emite el servicio de auth de la plataforma; sub = users.id


def _bearer_token(request: Request) -> str:
    scheme, _, token = (request.headers.get("Authorization") or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="No autenticado")
    return token.strip()


def _user_id(token: str) -> int:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        return int(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Token inválido o expirado")


def get_current_user(request: Request, session: Session = Depends(get_session)) -> User:
    user = session.get(User, _user_id(_bearer_token(request)))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Usuario inválido")
    return user
