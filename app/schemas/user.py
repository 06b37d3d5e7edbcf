from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field, validator
from datetime import datetime
from app.models.user import UserRole, UserStatus


class UserBase(BaseModel):
    """Base user schema"""
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=32)
    role: UserRole = UserRole.VIEWER
    assigned_districts: List[str] = Field(default_factory=list)


class UserCreate(UserBase):
    """Schema for user registration"""
    password: str

    @validator('password')
    def validate_password(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters long')
        if not any(c.isupper() for c in v):
            raise ValueError('Password must contain at least one uppercase letter')
        if not any(c.islower() for c in v):
            raise ValueError('Password must contain at least one lowercase letter')
        if not any(c.isdigit() for c in v):
            raise ValueError('Password must contain at least one digit')
        return v

    @validator('assigned_districts')
    def strip_districts(cls, v):
        return [district.strip() for district in v if district and district.strip()]


class UserLogin(BaseModel):
    """Schema for user login"""
    email: EmailStr
    password: str


class UserSummary(BaseModel):
    """Compact user reference embedded in alert responses"""
    id: int
    full_name: str
    email: EmailStr
    role: UserRole

    class Config:
        from_attributes = True


class UserResponse(UserBase):
    """Schema for user response (excludes sensitive data)"""
    id: int
    status: UserStatus
    last_login: Optional[datetime] = None
    notify_email: bool
    notify_sms: bool
    notify_in_app: bool
    notify_reports: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class NotificationPreferences(BaseModel):
    """Per-channel notification opt-ins"""
    email: bool = True
    sms: bool = True
    in_app: bool = True
    reports: bool = True


class NotificationPreferencesUpdate(BaseModel):
    """Partial update of notification preferences"""
    email: Optional[bool] = None
    sms: Optional[bool] = None
    in_app: Optional[bool] = None
    reports: Optional[bool] = None


class TokenResponse(BaseModel):
    """Schema for token response"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenPayload(BaseModel):
    """Schema for JWT token payload"""
    sub: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[datetime] = None
