"""
Pydantic request models and helpers that turn database rows into JSON-ready dicts.
"""
import re
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import inspect

from models import USER_ROLES

# Tanzanian mobile numbers: +255 / 255 / 0 prefix, then 6 or 7 and eight digits
PHONE_REGEX = re.compile(r"^(?:\+?255|0)[67]\d{8}$")

# Columns never exposed through the API
PRIVATE_FIELDS = {"password_hash"}


# ============================================================================
# REQUEST MODELS
# ============================================================================

class RegisterRequest(BaseModel):
    """Registration payload."""
    username: str = Field(min_length=1, max_length=50)
    email: EmailStr
    phone: str
    password: str = Field(min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    location: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        value = value.replace(" ", "")
        if not PHONE_REGEX.match(value):
            raise ValueError("Invalid phone number format")
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "username": "juma",
                "email": "juma@example.com",
                "phone": "0712345678",
                "password": "secret123",
                "first_name": "Juma",
                "last_name": "Hamisi",
                "location": "Dar es Salaam"
            }
        }


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    location: Optional[str] = None
    avatar_url: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    icon: Optional[str] = None
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=50)
    icon: Optional[str] = None
    description: Optional[str] = None


class PaymentRequest(BaseModel):
    """Mobile-money payment for one product."""
    product_id: int
    amount: Decimal = Field(gt=0)
    payment_method: str = Field(min_length=1)
    phone_number: str = Field(min_length=1)
    reference: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "product_id": 1,
                "amount": 25000,
                "payment_method": "mpesa",
                "phone_number": "0712345678"
            }
        }


class MessageCreate(BaseModel):
    receiver_id: int
    content: str = Field(min_length=1)
    product_id: Optional[int] = None


class UserAdminUpdate(BaseModel):
    is_verified: Optional[bool] = None
    role: Optional[str] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in USER_ROLES:
            raise ValueError(f"role must be one of: {', '.join(USER_ROLES)}")
        return value


# ============================================================================
# ROW SHAPING
# ============================================================================

def model_to_dict(obj: Any) -> Dict[str, Any]:
    """Column values of a mapped instance, without private fields."""
    return {
        attr.key: getattr(obj, attr.key)
        for attr in inspect(obj).mapper.column_attrs
        if attr.key not in PRIVATE_FIELDS
    }


def row_to_dict(row) -> Dict[str, Any]:
    """
    Flatten a result row such as ``(Product, username, image_count)``.

    Mapped entities contribute their columns; every other element is stored
    under its label.
    """
    data: Dict[str, Any] = {}
    for key, value in row._mapping.items():
        if hasattr(value, "__mapper__"):
            data.update(model_to_dict(value))
        else:
            data[key] = value
    return data
