# models/fictional_profile.py
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional


class FictionalProfile(SQLModel, table=True):
    __tablename__ = "fictional_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str
    is_featured: bool = False
    is_active: bool = True

    # skills que necesita el operador para llevar este perfil
    required_specializations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
