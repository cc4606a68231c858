from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Both columns are stored as SQLite INTEGER (signed 64-bit).
YEAR_MIN, YEAR_MAX = 0, 9999
ISSUE_MIN, ISSUE_MAX = 0, 2**31 - 1


def parse_flag(value: Any) -> Any:
    """Accept the literal strings "true"/"false" as well as native booleans."""
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        raise ValueError("isSpecialIssue must be 'true' or 'false'")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PublicationFields(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    year: int = Field(ge=YEAR_MIN, le=YEAR_MAX)
    volume: str = Field(min_length=1)
    issue: int = Field(ge=ISSUE_MIN, le=ISSUE_MAX)
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    author: str = Field(min_length=1)
    doi: Optional[str] = None
    is_special_issue: bool = False

    @field_validator("is_special_issue", mode="before")
    @classmethod
    def _parse_special_issue(cls, value: Any) -> Any:
        if value is None or value == "":
            return False
        return parse_flag(value)

    @field_validator("doi", mode="before")
    @classmethod
    def _blank_doi(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class PublicationUpdate(_CamelModel):
    """Partial update; every field left as None means "unchanged"."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    year: Optional[int] = Field(None, ge=YEAR_MIN, le=YEAR_MAX)
    volume: Optional[str] = None
    issue: Optional[int] = Field(None, ge=ISSUE_MIN, le=ISSUE_MAX)
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    doi: Optional[str] = None
    is_special_issue: Optional[bool] = None

    @field_validator("*", mode="before")
    @classmethod
    def _empty_means_unchanged(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("is_special_issue", mode="before")
    @classmethod
    def _parse_special_issue(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return parse_flag(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class PublicationResponse(_CamelModel):
    id: str
    year: int
    volume: str
    issue: int
    is_special_issue: bool
    title: str
    content: str
    author: str
    doi: Optional[str] = None
    artifact_content_type: Optional[str] = None
    has_artifact: bool = False
    created_at: datetime
    updated_at: datetime


class PublicationEnvelope(BaseModel):
    message: str
    data: PublicationResponse
    warnings: List[str] = Field(default_factory=list)


class ArtifactReceipt(BaseModel):
    ref: str
