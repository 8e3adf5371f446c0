"""
Pydantic schemas for the /identify endpoint
Handles request validation/normalization and response serialization
"null" and empty strings are treated as missing values
"""

import math
import re
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_SEPARATORS = re.compile(r"[\s\-()+]")
PHONE_PATTERN = re.compile(r"^\d{6,15}$")


def _blank_to_none(v):
    if isinstance(v, str) and v.strip().lower() in ("null", ""):
        return None
    return v


class IdentifyRequest(BaseModel):
    """
    Request schema for the /identify endpoint
    Validates that at least one of email or phoneNumber is provided
    and normalizes both so equal values compare equal in storage
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"email": "customer@example.com", "phoneNumber": "+1234567890"},
                {"email": "customer@example.com", "phoneNumber": None},
                {"email": None, "phoneNumber": "123-456-7890"},
            ]
        }
    )

    email: Optional[str] = Field(
        None,
        description="Customer email address",
        examples=["customer@example.com", None]
    )
    phoneNumber: Optional[str] = Field(
        None,
        description="Customer phone number",
        examples=["+1234567890", "123-456-7890", None]
    )

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v) -> Optional[str]:
        """Trim, lower-case and check the basic name@domain.tld shape"""
        v = _blank_to_none(v)
        if v is None:
            return None

        if not isinstance(v, str):
            raise ValueError('Email must be a string')

        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError('Invalid email format')
        return v

    @field_validator('phoneNumber', mode='before')
    @classmethod
    def validate_phone_number(cls, v) -> Optional[str]:
        """
        Strip separators and keep the digits
        Accepts numbers as well as strings; 6-15 digits are required
        """
        v = _blank_to_none(v)
        if v is None:
            return None

        if isinstance(v, bool):
            raise ValueError('Phone number must be a string or number')
        if isinstance(v, float):
            if not math.isfinite(v) or not v.is_integer():
                raise ValueError('Phone number must be a whole number')
            v = int(v)
        if isinstance(v, int):
            v = str(v)

        if not isinstance(v, str):
            raise ValueError('Phone number must be a string or number')

        cleaned = PHONE_SEPARATORS.sub('', v.strip())
        if not PHONE_PATTERN.match(cleaned):
            raise ValueError('Invalid phone number format: expected 6-15 digits')
        return cleaned

    @model_validator(mode='after')
    def validate_at_least_one_field(self):
        """
        Ensure at least one of email or phoneNumber is provided
        """
        if not self.email and not self.phoneNumber:
            raise ValueError('Either email or phoneNumber must be provided')
        return self


class ContactResponse(BaseModel):
    """
    Contact information in the API response
    Contains consolidated contact data for a customer
    """
    primaryContactId: int = Field(
        description="ID of the primary contact"
    )
    emails: List[str] = Field(
        description="All email addresses in the cluster, primary's first",
        examples=[["customer@example.com", "customer2@example.com"]]
    )
    phoneNumbers: List[str] = Field(
        description="All phone numbers in the cluster, primary's first",
        examples=[["1234567890", "9876543210"]]
    )
    secondaryContactIds: List[int] = Field(
        description="IDs of all secondary contacts linked to the primary, oldest first",
        examples=[[2, 3, 4]]
    )


class IdentifyResponse(BaseModel):
    """
    Response schema for the /identify endpoint
    Contains the consolidated contact information
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "contact": {
                    "primaryContactId": 1,
                    "emails": ["customer@example.com", "customer2@example.com"],
                    "phoneNumbers": ["1234567890", "9876543210"],
                    "secondaryContactIds": [2, 3]
                }
            }
        }
    )

    contact: ContactResponse = Field(
        description="Consolidated contact information"
    )


class ErrorResponse(BaseModel):
    """
    Error response schema for API errors
    """
    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "ValidationError",
                    "message": "Either email or phoneNumber must be provided",
                    "details": {"field": "root"}
                },
                {
                    "error": "DatabaseConnectionError",
                    "message": "Database is currently unavailable. Please try again later."
                }
            ]
        }
    )

    error: str = Field(
        description="Error type or category"
    )
    message: str = Field(
        description="Human-readable error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )
