# path: dependencies/cron.py
from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

import config


def verify_cron_secret(request: Request) -> None:
    """El scheduler externo llama con Authorization: Bearer <CRON_SECRET>."""
    if not config.CRON_SECRET:
        raise HTTPException(status_code=503, detail="CRON_SECRET no configurado")

    auth = request.headers.get("Authorization") or ""
    expected = f"Bearer {config.CRON_SECRET}"
    if not hmac.compare_digest(auth.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
