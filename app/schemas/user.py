"""
Pydantic schemas for registration, login and password reset.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, UUID4, field_validator
from typing import Optional
from datetime import datetime
import re


def validate_password_strength(v: str) -> str:
    """Validate password contains required character types."""
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if len(v) > 72:
        raise ValueError('Password cannot exceed 72 characters (bcrypt limitation)')
    if not re.search(r'[a-z]', v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not re.search(r'[A-Z]', v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not re.search(r'\d', v):
        raise ValueError('Password must contain at least one number')
    if not re.search(r'[!@#$%^&*(),.?":{}|<>]', v):
        raise ValueError('Password must contain at least one special character (!@#$%^&*(),.?":{}|<>)')
    return v


class UserRegisterRequest(BaseModel):
    """Request schema for user registration."""
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(
        ...,
        min_length=8,
        max_length=72,  # bcrypt limit
        description="Password must be 8-72 characters with uppercase, lowercase, number, and special character"
    )

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Name must be at least 2 characters long')
        return v

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class UserLoginRequest(BaseModel):
    """Request schema for user login."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request schema for setting a new password after the reset OTP was verified."""
    email: EmailStr
    new_password: str = Field(..., min_length=8, max_length=72)

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return validate_password_strength(v)


class PendingRegistration(BaseModel):
    """Registration held in the state store until the OTP is confirmed."""
    name: str
    password_hash: str


class UserResponse(BaseModel):
    """User profile response (no sensitive data)."""
    id: UUID4
    tenant_id: UUID4
    name: str
    email: str
    role: str
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    user: UserResponse
