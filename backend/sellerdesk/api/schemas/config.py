"""Pydantic schemas for the configuration API."""

from typing import Optional

from pydantic import BaseModel, Field


class MaskedSecret(BaseModel):
    set: bool = Field(..., description="Whether a usable value is stored")
    preview: str = Field("", description="First 6 and last 4 characters, or empty")


class OAuthStatus(BaseModel):
    connected: bool = Field(..., description="Whether a usable eBay OAuth token is available")
    username: Optional[str] = Field(None, description="eBay username of the connected account")


class ConfigResponse(BaseModel):
    """Role-aware configuration view. Credential fields are present for admins only."""

    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    email: str = ""
    example_template: str = ""
    role: Optional[str] = None

    ebay_token: Optional[MaskedSecret] = None
    ebay_client_id: Optional[MaskedSecret] = None
    ebay_client_secret: Optional[MaskedSecret] = None
    ebay_oauth: Optional[OAuthStatus] = None


class ConfigUpdate(BaseModel):
    """
    Partial update. Omitted fields are left alone; a blank string clears.

    Manual key fields are admin-only; the listing template is closed to
    operators.
    """

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    example_template: Optional[str] = None

    ebay_token: Optional[str] = None
    ebay_client_id: Optional[str] = None
    ebay_client_secret: Optional[str] = None


class SuccessResponse(BaseModel):
    success: bool = Field(..., description="Whether operation succeeded")
