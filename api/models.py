"""
API request and response models for micro-crm REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
crm/models.py, which own the internal domain representation. Route handlers
map between the two with the from_* factory methods below.

password_hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from crm.models import Company, Contact

# Deliberately loose: one "@" with something on both sides. Deliverability
# is the provider's problem, not ours.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=50)


class LoginRequest(BaseModel):
    """Request body for POST /login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/profile. Omitted fields are left unchanged.

    new_password requires current_password.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: Optional[str] = Field(default=None, min_length=8, max_length=128)


class UserPublic(BaseModel):
    """Account fields safe to return to the account owner."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: str
    status: str
    phone_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            status=user.status,
            phone_number=user.phone_number,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuthResponse(BaseModel):
    """Response for POST /register and POST /login."""

    message: str
    token: str
    user: UserPublic


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------


class CompanyCreate(BaseModel):
    """Request body for POST /api/companies."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    website: Optional[str] = Field(default=None, max_length=255)
    industry: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=500)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    pipeline_stage: str = Field(default="Lead", max_length=30)


class CompanyResponse(BaseModel):
    id: int
    name: str
    website: Optional[str] = None
    industry: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    pipeline_stage: str
    created_at: str
    updated_at: str

    @classmethod
    def from_company(cls, company: Company) -> "CompanyResponse":
        return cls(
            id=company.id,
            name=company.name,
            website=company.website,
            industry=company.industry,
            address=company.address,
            phone_number=company.phone_number,
            pipeline_stage=company.pipeline_stage,
            created_at=company.created_at,
            updated_at=company.updated_at,
        )


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class ContactCreate(BaseModel):
    """Request body for POST /api/contacts.

    company_id, when given, must name a company owned by the caller.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    company_id: Optional[int] = None
    email: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    job_title: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=5000)
    pipeline_stage: str = Field(default="Lead", max_length=30)


class ContactResponse(BaseModel):
    id: int
    company_id: Optional[int] = None
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    job_title: Optional[str] = None
    notes: Optional[str] = None
    pipeline_stage: str
    created_at: str
    updated_at: str

    @classmethod
    def from_contact(cls, contact: Contact) -> "ContactResponse":
        return cls(
            id=contact.id,
            company_id=contact.company_id,
            first_name=contact.first_name,
            last_name=contact.last_name,
            email=contact.email,
            phone_number=contact.phone_number,
            job_title=contact.job_title,
            notes=contact.notes,
            pipeline_stage=contact.pipeline_stage,
            created_at=contact.created_at,
            updated_at=contact.updated_at,
        )
