import sqlmodel

from ._base import BaseModel


class User(BaseModel, table=True):
    __tablename__: str = "users"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    twitter_id: str | None = sqlmodel.Field(default=None, nullable=True, index=True, unique=True)
    name: str | None = sqlmodel.Field(default=None, nullable=True)

    x_cookies: int = sqlmodel.Field(default=0, ge=0)
    """Soft currency credited directly to the user"""
    diamonds: int = sqlmodel.Field(default=0, ge=0)
