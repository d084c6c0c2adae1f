from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ContactSubmission(BaseModel):
    """Raw contact form payload; nothing here is trusted or validated yet."""

    model_config = ConfigDict(extra="ignore")

    email: str = ""
    subject: str = ""
    message: str = ""
    started_at: Any = None
    website: str = ""


class ContactFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=20000)


class ContactFormResponse(BaseModel):
    started_at: int


class ContactResponse(BaseModel):
    success: bool
    message: str


class TagItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    title: Optional[str] = None
    slug: Optional[str] = None


class BlogPostItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    title: Optional[str] = None
    slug: Optional[str] = None
    published_at: Optional[str] = Field(default=None, alias="publishedAt")
    tags: Optional[list[TagItem]] = None
    snippet: str = ""


class BlogPageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    posts: list[BlogPostItem]
    next_offset: int = Field(alias="nextOffset")
    has_more: bool = Field(alias="hasMore")
    total: int


class ProjectItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    title: Optional[str] = None
