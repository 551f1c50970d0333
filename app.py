import logging

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

import config
from dependencies.auth import get_current_user
from database import engine

# IMPORT CLAVE: registra TODOS los modelos
import models  # noqa: F401

# Routers
from routes.chat_routes import router as chat_router
from routes.message_routes import router as message_router
from routes.operator_routes import router as operator_router
from routes.admin_routes import router as admin_router
from routes.payment_routes import router as payment_router
from routes.cron_routes import router as cron_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="Chat engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------
# STARTUP
# -------------------------
@app.on_event("startup")
def on_startup():
    SQLModel.metadata.create_all(engine)
    logger.info("[APP] tablas listas")


# -------------------------
# ROOT
# -------------------------
@app.get("/")
def home():
    return {"mensaje": "Backend listo"}


@app.get("/me")
def me(current_user=Depends(get_current_user)):
    return {"id": current_user.id, "email": current_user.email, "role_id": current_user.role_id, "name": current_user.name}


# -------------------------
# ROUTERS
# -------------------------
app.include_router(chat_router)
app.include_router(message_router)
app.include_router(operator_router)
app.include_router(admin_router)
app.include_router(payment_router)
app.include_router(cron_router)
