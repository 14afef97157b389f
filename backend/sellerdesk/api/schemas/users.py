"""Pydantic schemas for account user management."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AccountUser(BaseModel):
    """A user of the caller's account. Never carries credential fields."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    first_name: str = ""
    last_name: str = ""
    email: str
    role: str
    created_at: Optional[str] = None


class AccountUserList(BaseModel):
    success: bool = True
    users: List[AccountUser]


class RoleUpdate(BaseModel):
    role: str = Field(..., description="admin, publisher or operator")


class SessionIdentity(BaseModel):
    user_id: int
    account_id: Optional[int] = None
    role: Optional[str] = None
