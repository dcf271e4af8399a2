"""
============================================================================
SNAP Bank Bridge v1.0.0
Wire Models - Pydantic Schemas for Bank Envelopes
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: camelCase field names exactly as the bank sends them
Side Effects: None (pure validation)

============================================================================
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


GRANT_TYPE_CLIENT_CREDENTIALS = "client_credentials"


class BankErrorEnvelope(BaseModel):
    """
    Error body returned by the bank on any non-200 response.

    Unknown extra fields (additionalInfo and friends) are tolerated.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    response_code: str = Field(..., alias="responseCode", min_length=1)
    response_message: str = Field("", alias="responseMessage")


class AccessTokenRequest(BaseModel):
    """Body of the B2B access-token request in either direction."""
    model_config = ConfigDict(populate_by_name=True)

    grant_type: str = Field(..., alias="grantType")

    @field_validator("grant_type")
    @classmethod
    def validate_grant_type(cls, v: str) -> str:
        if v != GRANT_TYPE_CLIENT_CREDENTIALS:
            raise ValueError(f"grantType must be '{GRANT_TYPE_CLIENT_CREDENTIALS}'")
        return v


class AccessTokenResponse(BaseModel):
    """Successful access-token response."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    response_code: str = Field(..., alias="responseCode")
    response_message: str = Field("", alias="responseMessage")
    access_token: str = Field(..., alias="accessToken", min_length=1)
    token_type: str = Field("bearer", alias="tokenType")
    expires_in: Optional[str] = Field(None, alias="expiresIn")

    @field_validator("expires_in", mode="before")
    @classmethod
    def coerce_expires_in(cls, v):
        # banks send either "900" or 900
        if v is None:
            return v
        return str(v)
