# models/users.py
from sqlmodel import SQLModel, Field
from typing import Optional

# identidades emitidas por el servicio de auth externo (admins, operadores, usuarios)
class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    role_id: int = Field(index=True)

    name: str
    email: str = Field(index=True, unique=True)
    is_active: bool = True
