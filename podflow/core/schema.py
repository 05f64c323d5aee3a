from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class BlogPost(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    body: str = Field(validation_alias=AliasChoices("body", "markdown"))
    html: str = ""
    meta_description: str = ""
    primary_keyword: str = ""
    secondary_keywords: list[str] = Field(default_factory=list)

    @field_validator("body")
    @classmethod
    def _body_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("blog post body must not be empty")
        return value


class ShowNotesSection(BaseModel):
    heading: str
    content: str = ""


class ShowNotes(BaseModel):
    summary: str = ""
    sections: list[ShowNotesSection] = Field(default_factory=list)
    html: str = ""


class GeneratedContent(BaseModel):
    """Canonical content bundle produced by the generation workflow."""

    titles: list[str] = Field(min_length=1)
    blog_post: BlogPost
    show_notes: ShowNotes
    seo: dict[str, Any] = Field(default_factory=dict)


class TranscriptionOutcome(BaseModel):
    """Normalised answer of a transcription dispatch: either a transcript or a job to wait for."""

    transcript: str | None = None
    job_id: str | None = None
    episode_title: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.transcript)


class TranscriptionStatus(BaseModel):
    status: Literal["processing", "completed", "failed"]
    transcript: str | None = None
    error: str | None = None


class PublishRequest(BaseModel):
    title: str = ""
    body_markdown: str = ""
    primary_keyword: str | None = None
    secondary_keywords: list[str] = Field(default_factory=list)
    category: str = "Podcast"
    tags: list[str] = Field(default_factory=list)
    publish_immediately: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "seo_title": self.title,
            "blog_post_markdown": self.body_markdown,
            "primary_keyword": self.primary_keyword,
            "secondary_keywords": self.secondary_keywords,
            "wordpress_category": self.category or "Podcast",
            "tags": self.tags,
            "publish_immediately": self.publish_immediately,
        }


class PublishOutcome(BaseModel):
    success: bool
    post_url: str | None = None
    post_id: str | None = None
