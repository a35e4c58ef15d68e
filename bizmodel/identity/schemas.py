"""
schemas.py — Auth request/response contracts.

Structural checks only (types, presence). Business rules — email shape,
password complexity — live in validator.py so every violation is reported
in one 400 response.
"""
from typing import Any, Optional

from bizmodel.schemas import CamelModel


class SignupRequest(CamelModel):
    email: str
    password: str
    first_name: str
    last_name: str
    quiz_data: Optional[dict[str, Any]] = None


class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class ProfileUpdateRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


class UnsubscribeRequest(CamelModel):
    email: str


class SignupResponse(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_temporary: bool = True
