"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the Twilio webhooks (form-encoded, PascalCase keys)
- Response models for health, status and the admin audit listing
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class IncomingSms(BaseModel):
    """
    Inbound SMS webhook payload as posted by Twilio.

    Validates:
    - MessageSid: non-empty string
    - From/To: phone numbers with at least 7 digits (normalised later)
    - Body: optional, max 4096 characters
    """
    message_sid: str = Field(
        ...,
        alias="MessageSid",
        min_length=1,
        description="Provider message identifier"
    )
    account_sid: Optional[str] = Field(
        None,
        alias="AccountSid",
        description="Provider account identifier"
    )
    # 'from' is a reserved word in Python
    from_: str = Field(
        ...,
        alias="From",
        description="Sender phone number"
    )
    to: str = Field(
        ...,
        alias="To",
        description="Service phone number the message was sent to"
    )
    body: str = Field(
        "",
        alias="Body",
        max_length=4096,
        description="Message text"
    )

    @field_validator("from_", "to")
    @classmethod
    def validate_phone_number(cls, v: str, info) -> str:
        """Require something that normalises to a phone number."""
        if len(re.sub(r"\D", "", v)) < 7:
            raise ValueError(f"{info.field_name} must be a phone number")
        return v.strip()

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "MessageSid": "SM0123456789abcdef0123456789abcdef",
                    "From": "+14155550123",
                    "To": "+14155550100",
                    "Body": "Add milk to the grocery list",
                }
            ]
        },
    )


class SmsStatusCallback(BaseModel):
    """Delivery status callback for an outbound message."""
    message_sid: str = Field(..., alias="MessageSid", min_length=1)
    message_status: str = Field(..., alias="MessageStatus", min_length=1)
    error_code: Optional[str] = Field(None, alias="ErrorCode")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class StatusResponse(BaseModel):
    """Service status for administrators."""
    status: str
    version: str
    environment: str
    checks: dict[str, bool] = Field(
        default_factory=dict,
        description="Whether each collaborator is configured"
    )


class MessageLogResponse(BaseModel):
    """A single message log entry, inbound or outbound."""
    id: int
    from_phone: str
    to_phone: str
    body: str
    direction: str
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    intent: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageLogListResponse(BaseModel):
    """
    Response model for GET /messages endpoint with pagination.

    Contains:
    - data: log entries matching filters
    - total: total count matching filters (ignoring pagination)
    - limit: number of entries per page
    - offset: starting position
    """
    data: list[MessageLogResponse] = Field(
        default_factory=list,
        description="Message log entries"
    )
    total: int = Field(
        ...,
        ge=0,
        description="Total entries matching filters (ignoring limit/offset)"
    )
    limit: int = Field(
        ...,
        ge=1,
        le=100,
        description="Maximum entries per page"
    )
    offset: int = Field(
        ...,
        ge=0,
        description="Number of entries skipped"
    )
