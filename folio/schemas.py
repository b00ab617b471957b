"""
Pydantic schemas for the Folio API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, StringConstraints, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from folio.errors import ValidationError

UserName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=150)
]
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

_http_url = TypeAdapter(HttpUrl)


def validate_link(value: Optional[str], field_name: str) -> Optional[str]:
    """Return a well-formed http(s) URL, None for a missing value, or raise."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        _http_url.validate_python(value)
    except PydanticValidationError as exc:
        raise ValidationError(f"{field_name} must be a valid URL") from exc
    return value


class RegisterRequest(BaseModel):
    userName: UserName
    password: str = Field(..., min_length=1)
    password2: str


class LoginRequest(BaseModel):
    userName: UserName
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    id: str
    userName: str
    createdAt: Optional[datetime] = None


class AuthResponse(BaseModel):
    message: str
    token: str
    user: UserOut


class ContactRequest(BaseModel):
    name: RequiredText
    email: EmailStr
    reason: RequiredText


class ContactOut(BaseModel):
    id: str
    name: str
    email: str
    reason: str
    date: datetime


class ContactSubmitResponse(BaseModel):
    message: str
    contact: ContactOut


class AuthorOut(BaseModel):
    id: str
    userName: Optional[str] = None


class PaginationOut(BaseModel):
    currentPage: int
    totalPages: int
    totalItems: int
    limit: int
    hasNextPage: bool
    hasPreviousPage: bool


class BlogOut(BaseModel):
    id: str
    title: str
    content: str
    excerpt: str
    readTime: int
    featuredImage: Optional[str] = None
    published: bool
    tags: list[str]
    author: AuthorOut
    createdAt: datetime
    updatedAt: datetime


class BlogListResponse(BaseModel):
    blogs: list[BlogOut]
    pagination: PaginationOut


class ProjectOut(BaseModel):
    id: str
    title: str
    description: str
    videoUrl: Optional[str] = None
    projectUrl: Optional[str] = None
    githubUrl: Optional[str] = None
    features: list[str]
    technologies: list[str]
    status: str
    author: AuthorOut
    createdAt: datetime
    updatedAt: datetime


class ProjectListResponse(BaseModel):
    projects: list[ProjectOut]
    pagination: PaginationOut


class MessageResponse(BaseModel):
    message: str


class UploadResponse(BaseModel):
    url: str
    publicId: str
    resourceType: str


class HealthResponse(BaseModel):
    status: str
