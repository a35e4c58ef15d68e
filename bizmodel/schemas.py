"""
schemas.py — Shared Pydantic v2 building blocks.

Defines:
  - CamelModel     (snake_case in Python, camelCase on the wire — the frontend contract)
  - ErrorResponse  (documents the error envelope produced by main.py handlers)
  - UserOut        (user object returned by auth and admin routes; never carries the password)
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """{"error": "...", "code": "...", "details"?: ..., plus discriminators}"""
    model_config = ConfigDict(extra="allow")

    error: str
    code: str
    details: Optional[Any] = None


class UserOut(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_temporary: bool
    is_paid: bool
    is_unsubscribed: bool = False
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
