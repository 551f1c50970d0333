import os
from sqlmodel import create_engine, Session

import config  # noqa: F401  (carga el .env)

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("Falta DATABASE_URL en el .env")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO, connect_args=connect_args)

def get_session():
    with Session(engine) as session:
        yield session
