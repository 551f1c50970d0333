# path: config.py
from __future__ import annotations

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _hours(name: str, default: str) -> tuple[int, int]:
    # "20-2" => (20, 2): desde las 20:00 hasta las 02:00
    start, end = os.getenv(name, default).split("-", 1)
    return int(start), int(end)


# -------------------------
# APP
# -------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

SECRET_KEY = os.getenv("SECRET_KEY", "CAMBIA_ESTE_SECRET_POR_ALGO_LARGO_Y_RANDOM")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# secreto compartido con el scheduler externo (Bearer)
CRON_SECRET = os.getenv("CRON_SECRET", "")

# -------------------------
# PAYSTACK
# -------------------------
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYSTACK_TIMEOUT_SECONDS = float(os.getenv("PAYSTACK_TIMEOUT_SECONDS", "10"))
WEBHOOK_FAILURE_ALERT_THRESHOLD = _int("WEBHOOK_FAILURE_ALERT_THRESHOLD", 3)

# -------------------------
# ASIGNACION / LIFECYCLE
# -------------------------
MAX_REASSIGNMENTS = _int("MAX_REASSIGNMENTS", 3)
REASSIGN_EXCLUSION_WINDOW = _int("REASSIGN_EXCLUSION_WINDOW", 2)
ASSIGNMENT_RETRY_LIMIT = _int("ASSIGNMENT_RETRY_LIMIT", 3)

OPERATOR_IDLE_THRESHOLD_MINUTES = _int("OPERATOR_IDLE_THRESHOLD_MINUTES", 10)
QUEUE_TIMEOUT_MINUTES = _int("QUEUE_TIMEOUT_MINUTES", 30)
QUEUE_TIMEOUT_MIN_ATTEMPTS = _int("QUEUE_TIMEOUT_MIN_ATTEMPTS", 3)
INACTIVITY_TIMEOUT_HOURS = _int("INACTIVITY_TIMEOUT_HOURS", 24)
# 0 = los escalados solo se resuelven a mano
ESCALATION_AUTO_CLOSE_DAYS = _int("ESCALATION_AUTO_CLOSE_DAYS", 7)

SWEEP_ALERT_THRESHOLD = _int("SWEEP_ALERT_THRESHOLD", 10)
SWEEP_CRITICAL_THRESHOLD = _int("SWEEP_CRITICAL_THRESHOLD", 50)

# -------------------------
# PRICING
# -------------------------
FREE_MESSAGES_COUNT = _int("FREE_MESSAGES_COUNT", 3)
BASE_MESSAGE_COST = _decimal("BASE_MESSAGE_COST", "1")
PEAK_HOURS = _hours("PEAK_HOURS", "20-2")
OFF_PEAK_HOURS = _hours("OFF_PEAK_HOURS", "2-8")
PEAK_MULTIPLIER = _decimal("PEAK_MULTIPLIER", "1.2")
OFF_PEAK_MULTIPLIER = _decimal("OFF_PEAK_MULTIPLIER", "0.8")
FEATURED_MULTIPLIER = _decimal("FEATURED_MULTIPLIER", "1.5")
# EAT (Africa/Nairobi) no tiene horario de verano
PRICING_UTC_OFFSET_HOURS = _int("PRICING_UTC_OFFSET_HOURS", 3)
