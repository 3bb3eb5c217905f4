from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator, model_validator
from reportlab.lib import colors

from .utils import validate_page_expression

PageSelectionField = Union[List[int], str]


class OperationParams(BaseModel):
    """Base for operation parameter schemas; unknown request fields are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _check_page_selection(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return validate_page_expression(stripped)
    return value


class SourceFields(OperationParams):
    public_url: Optional[AnyHttpUrl] = Field(None, alias="publicUrl")
    public_urls: Optional[List[AnyHttpUrl]] = Field(None, alias="publicUrls")
    base64_data: Optional[str] = Field(None, alias="base64")
    filename: Optional[str] = None
    upload: bool = False

    @field_validator("public_urls", mode="before")
    @classmethod
    def _wrap_single_url(cls, value: Any) -> Any:
        # A form field posted once arrives as a plain string
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [stripped]
        return value


class NoParams(OperationParams):
    pass


class PageSelectionParams(OperationParams):
    pages: PageSelectionField

    @field_validator("pages", mode="before")
    @classmethod
    def _validate_pages(cls, value: Any) -> Any:
        return _check_page_selection(value)


class RotateParams(OperationParams):
    angle: int
    pages: Optional[PageSelectionField] = None

    @field_validator("angle")
    @classmethod
    def _validate_angle(cls, value: int) -> int:
        if value % 90 != 0:
            raise ValueError("angle must be a multiple of 90")
        return value

    @field_validator("pages", mode="before")
    @classmethod
    def _validate_pages(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return _check_page_selection(value)


class ReorderParams(OperationParams):
    order: List[int] = Field(..., min_length=1)

    @field_validator("order", mode="before")
    @classmethod
    def _parse_order(cls, value: Any) -> Any:
        # Form fields arrive as "3,1,2" or "[3, 1, 2]"
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [int(part) for part in stripped.split(",") if part.strip()]
        return value


class WatermarkParams(OperationParams):
    text: str = Field(..., min_length=1)
    opacity: float = Field(0.3, ge=0.0, le=1.0)
    color: str = "#808080"
    angle: float = 45.0
    font_size: Optional[float] = Field(None, alias="fontSize", gt=0)

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: str) -> str:
        try:
            colors.toColor(value)
        except ValueError as exc:
            raise ValueError(f"unrecognised color {value!r}") from exc
        return value


class ProtectParams(OperationParams):
    password: str = Field(..., min_length=1)


class UnlockParams(OperationParams):
    password: Optional[str] = None


METADATA_KEYS: Dict[str, str] = {
    "title": "/Title",
    "author": "/Author",
    "subject": "/Subject",
    "keywords": "/Keywords",
    "creator": "/Creator",
    "producer": "/Producer",
}


class MetadataParams(OperationParams):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[Union[str, List[str]]] = None
    creator: Optional[str] = None
    producer: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def _join_keywords(cls, value: Optional[Union[str, List[str]]]) -> Optional[str]:
        if isinstance(value, list):
            return ", ".join(keyword.strip() for keyword in value if keyword.strip())
        return value

    def updates(self) -> Dict[str, str]:
        """Document-info entries for the fields that were supplied."""
        return {
            METADATA_KEYS[name]: value
            for name, value in self.model_dump().items()
            if value is not None
        }


class MetadataWriteParams(MetadataParams):
    @model_validator(mode="after")
    def _require_field(self) -> "MetadataWriteParams":
        if not self.updates():
            raise ValueError(f"at least one of {', '.join(METADATA_KEYS)} is required")
        return self


class TextParams(OperationParams):
    pages: Optional[PageSelectionField] = None

    @field_validator("pages", mode="before")
    @classmethod
    def _validate_pages(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        return _check_page_selection(value)


class HealthStatus(BaseModel):
    ok: bool = True
    status: str = "ok"
    max_source_mb: float
    request_deadline_seconds: float
    storage_configured: bool
    ghostscript_available: bool
    operations: List[str]
