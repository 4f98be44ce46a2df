from datetime import datetime
from typing import Any, List, Optional

from typing_extensions import Annotated
from pydantic import (
    BaseModel,
    EmailStr,
    Field,
    field_validator,
    model_validator,
    StringConstraints,
    ConfigDict,
    ValidationError,
)
from pydantic_core import PydanticCustomError

from config import Config

NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]

REQUIRED_FIELDS = (("title", "Title is required"), ("author", "Author is required"))


class BookRequest(BaseModel):
    """Body of POST /books and PUT /books/{id}.

    PUT replaces all four mutable fields, so a field left out of the body
    ends up cleared (title and author cannot be left out).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: NonEmptyStr = Field(..., description="Book title")
    author: NonEmptyStr = Field(..., description="Book author")
    tags: Optional[List[str]] = Field(None, description="Ordered list of tags")
    cover_image: Optional[str] = Field(None, description="Cover image URL")

    @model_validator(mode="before")
    @classmethod
    def require_title_and_author(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise PydanticCustomError("invalid_body", "Request body must be a JSON object")
        for field, message in REQUIRED_FIELDS:
            value = data.get(field)
            if not isinstance(value, str) or not value.strip():
                raise PydanticCustomError("missing_field", message, {"field": field})
        return data

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if not v:
            return None
        tags: List[str] = []
        for tag in v:
            if tag and tag not in tags:
                tags.append(tag)
        return tags or None

    @field_validator("cover_image")
    @classmethod
    def blank_cover_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


def first_error_message(exc: ValidationError) -> str:
    """Message of the first failed check, without pydantic's prefixes."""
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error["type"] in ("missing_field", "invalid_body") or not location:
        return error["msg"]
    return f"{location}: {error['msg']}"


class BookResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    author: str
    tags: Optional[List[str]] = None
    cover_image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookEnvelope(BaseModel):
    book: BookResponse


class BooksEnvelope(BaseModel):
    books: List[BookResponse] = Field(..., description="Never null, can be empty")


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=Config.MIN_PASSWORD_LENGTH, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr


class UserEnvelope(BaseModel):
    user: UserResponse
