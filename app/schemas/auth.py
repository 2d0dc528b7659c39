from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    SALES = "SALES"
    USER = "USER"
    READONLY = "READONLY"


class Actor(BaseModel):
    """The authenticated caller as resolved by the identity provider."""

    id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    company_id: Optional[str] = None
    is_active: bool = True
