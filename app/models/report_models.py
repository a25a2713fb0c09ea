import base64
import binascii
from typing import Any
from typing import Literal

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

from app.models.field_schema import FieldSpec


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class ReportData(BaseModel):
    """Validated wizard data, one mapping of field name to value per report section.

    Field names inside each section are the wizard's camelCase keys
    (``insuredName``); the snake_case placeholder name is accepted as well.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    project_information: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_alias("project_information", "projectInformation")
    )
    assignment_scope: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_alias("assignment_scope", "assignmentScope")
    )
    building_observations: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=_alias("building_observations", "buildingObservations", "buildingAndSite"),
    )
    research: dict[str, Any] = Field(default_factory=dict)
    discussion_analysis: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=_alias("discussion_analysis", "discussionAnalysis", "discussionAndAnalysis"),
    )
    conclusions: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "project_information",
        "assignment_scope",
        "building_observations",
        "research",
        "discussion_analysis",
        "conclusions",
        mode="before",
    )
    @classmethod
    def _none_section_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    def section(self, name: str) -> dict[str, Any]:
        return getattr(self, name)

    def raw_value(self, spec: FieldSpec) -> str | None:
        """Return the author-entered value for *spec*, or None when it is missing or blank."""
        section = self.section(spec.section)
        value = section.get(spec.key)
        if value is None:
            value = section.get(spec.placeholder)
        if value is None:
            return None
        text = str(value)
        return text if text.strip() else None


class PhotoAttachment(BaseModel):
    """One uploaded photograph. ``content`` travels as base64 in JSON payloads."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    original_filename: str = Field(validation_alias=_alias("original_filename", "originalFilename", "filename"))
    caption: str = Field(default="", validation_alias=_alias("caption", "description"))
    content: bytes | None = None
    url: str | None = Field(default=None, validation_alias=_alias("url", "publicUrl", "s3Url"))
    s3_key: str | None = Field(default=None, validation_alias=_alias("s3_key", "s3Key"))
    file_size: int = Field(default=0, validation_alias=_alias("file_size", "fileSize"))

    @field_validator("caption", mode="before")
    @classmethod
    def _caption_none(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("content", mode="before")
    @classmethod
    def _decode_base64(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("content must be base64 encoded") from e
        return v


class SlotBinding(BaseModel):
    """Binding of one template photo slot. Absent slots carry no data at all."""

    model_config = ConfigDict(frozen=True)

    index: int
    exists: bool
    image: bytes | None = None
    caption: str = ""
    filename: str = ""
    reference: str = ""


class EnhancementTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    field_type: str
    raw_text: str
    context: str | None = None
    label: str = ""

    @property
    def display_label(self) -> str:
        return self.label or self.field_name


class EnhancementResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    final_text: str
    succeeded: bool
    detail_message: str = ""


class ProgressEvent(BaseModel):
    """A progress update of one run. ``detail_log`` is cumulative."""

    model_config = ConfigDict(frozen=True)

    percent_complete: float = Field(ge=0.0, le=100.0)
    current_task_label: str
    detail_log: tuple[str, ...] = ()
    terminal: bool = False
    error: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "progress": round(self.percent_complete, 2),
            "message": self.current_task_label,
            "completed": self.terminal,
            "error": self.error,
            "details": list(self.detail_log),
        }


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ai_enhance_text: bool = Field(default=False, validation_alias=_alias("ai_enhance_text", "aiEnhanceText"))
    include_photos_inline: bool = Field(
        default=False, validation_alias=_alias("include_photos_inline", "includePhotosInline")
    )
    output_mode: Literal["docx", "google_docs"] = Field(
        default="docx", validation_alias=_alias("output_mode", "outputMode")
    )
    photo_overflow: Literal["reject", "truncate"] = Field(
        default="reject", validation_alias=_alias("photo_overflow", "photoOverflow")
    )
    title: str | None = None


_OPTION_KEYS = frozenset(
    {
        "ai_enhance_text",
        "aiEnhanceText",
        "include_photos_inline",
        "includePhotosInline",
        "output_mode",
        "outputMode",
        "photo_overflow",
        "photoOverflow",
        "title",
    }
)


class GenerateReportRequest(BaseModel):
    """Payload of the generation trigger: all wizard data, the photo list and the options.

    Options may be sent nested under ``options`` or as top-level keys
    (``aiEnhanceText``, ``includePhotosInline``, ...); nested values win.
    """

    model_config = ConfigDict(populate_by_name=True)

    report_data: ReportData = Field(default_factory=ReportData, validation_alias=_alias("report_data", "reportData"))
    photos: list[PhotoAttachment] = Field(default_factory=list, validation_alias=_alias("photos", "images"))
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_options(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        flat = {k: v for k, v in data.items() if k in _OPTION_KEYS}
        if not flat:
            return data
        nested = data.get("options") or {}
        if isinstance(nested, GenerationOptions):
            nested = nested.model_dump()
        rest = {k: v for k, v in data.items() if k not in _OPTION_KEYS}
        return {**rest, "options": {**flat, **nested}}


class EnhanceTextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bullet_points: str = Field(min_length=1, validation_alias=_alias("bullet_points", "bulletPoints"))
    field_type: str = Field(validation_alias=_alias("field_type", "fieldType"))
    context: str | None = None


class AssembledDocument(BaseModel):
    content: bytes
    filename: str
    media_type: str
    unresolved_placeholders: list[str] = Field(default_factory=list)
    truncated_photos: int = 0


class DocumentReference(BaseModel):
    document_id: str
    document_url: str
    title: str
    unresolved_placeholders: list[str] = Field(default_factory=list)
    truncated_photos: int = 0
