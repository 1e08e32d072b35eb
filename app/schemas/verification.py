"""
Pydantic schemas for OTP verification endpoints.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
import re


class VerifyOtpRequest(BaseModel):
    """Request to verify a 4-digit OTP for an email"""
    email: EmailStr
    otp: str = Field(..., min_length=4, max_length=4, description="4-digit one-time passcode")

    @field_validator('otp')
    @classmethod
    def validate_otp_format(cls, v: str) -> str:
        """Ensure code is exactly 4 digits"""
        if not re.match(r'^[0-9]{4}$', v):
            raise ValueError('OTP must be exactly 4 digits')
        return v
