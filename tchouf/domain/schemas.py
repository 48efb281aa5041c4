"""
Input Schemas - Validated Payloads Accepted by the Core
=======================================================

Each Pydantic model describes what a caller may supply when creating or
editing an entity. Server-owned fields (id, timestamps, avg_rating,
review_count, verified, claimed_by, status) are absent on purpose; update
schemas forbid unknown keys so a route cannot smuggle them in.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class NewUser(BaseModel):
    uid: str = Field(..., min_length=1, description="External identity reference")
    email: EmailStr = Field(..., description="Email address")
    display_name: Optional[str] = Field(None, max_length=120)
    photo_url: Optional[str] = None


class UserProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = Field(None, max_length=120)
    photo_url: Optional[str] = None


class NewBusiness(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    city: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    photos: List[str] = Field(default_factory=list, description="Ordered photo references")
    created_by: int = Field(..., gt=0, description="Reference to user id")
    slug: Optional[str] = Field(None, description="Derived from name when omitted")


class BusinessUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    category: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    website: Optional[str] = None
    photos: Optional[List[str]] = None


class NewReview(BaseModel):
    business_id: int = Field(..., gt=0)
    user_id: int = Field(..., gt=0)
    rating: int = Field(..., ge=1, le=5, description="Star rating 1-5")
    comment: Optional[str] = None
    photo_url: Optional[str] = None


class ReviewUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None
    photo_url: Optional[str] = None


class NewClaim(BaseModel):
    business_id: int = Field(..., gt=0)
    user_id: int = Field(..., gt=0)
    proof_url: Optional[str] = Field(None, description="Proof-of-ownership document reference")


class ClaimDecision(BaseModel):
    status: Literal["approved", "rejected"]
    reviewed_by: Optional[int] = Field(None, gt=0, description="Admin user id")


class ClaimUpdate(BaseModel):
    """Claimant edits to a claim that is still pending."""
    model_config = ConfigDict(extra="forbid")

    proof_url: Optional[str] = None
