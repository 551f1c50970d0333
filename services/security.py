# path: services/security.py
from __future__ import annotations

from datetime import timedelta
from jose import jwt

import config
from services.clock import utcnow

SECRET_KEY = config.SECRET_KEY
ALGORITHM = config.ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24


# los tokens los emite el servicio de auth; esto queda para scripts internos y tests
def create_access_token(data: dict, *, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    expire = utcnow() + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
