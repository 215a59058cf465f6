from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from campus_platform.core.permissions import Role


class SignupRequest(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=7, max_length=20)
    password: str = Field(..., min_length=6)
    role: Role = Role.STUDENT
    department: Optional[str] = None
    section: Optional[str] = None
    id_number: Optional[str] = None
    year: Optional[str] = None
    semester: Optional[str] = None
    college: Optional[str] = None
    expertise: Optional[list] = None
    organization: Optional[str] = None
    experience_years: Optional[int] = Field(None, ge=0)

    @field_validator("role")
    @classmethod
    def only_self_service_roles(cls, v):
        if v not in (Role.STUDENT, Role.MENTOR):
            raise ValueError("Only students and mentors can sign up")
        return v


class LoginRequest(BaseModel):
    email_or_phone: str = Field(..., min_length=3)
    password: str


class OTPRequest(BaseModel):
    email: EmailStr


class OTPVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6)


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    new_password: str = Field(..., min_length=6)
