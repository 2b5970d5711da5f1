"""Generation contracts shared by ingestion, validation, and the pipeline."""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_NOTES_CHARS = 2000


class GenerationKind(str, Enum):
  """Which creation flow a request belongs to."""

  LESSON_GUIDE = "LESSON_GUIDE"
  FULL_LESSON = "FULL_LESSON"
  AUDIO_SCRIPT = "AUDIO_SCRIPT"
  SUB_PLAN = "SUB_PLAN"


class MimeCategory(str, Enum):
  """Upload categories; each one has exactly one extraction strategy."""

  PDF = "pdf"
  PPT = "ppt"
  IMAGE = "image"
  TEXT = "text"


class ExtractionMethod(str, Enum):
  """Where the source text was extracted."""

  CLIENT = "client"
  SERVER = "server"


class UploadedSource(BaseModel):
  """Text extracted from one uploaded file."""

  file_name: str = Field(alias="fileName")
  size_bytes: int = Field(alias="sizeBytes", ge=0)
  mime_category: MimeCategory = Field(alias="mimeCategory")
  extracted_text: str = Field(alias="extractedText")
  extraction_method: ExtractionMethod = Field(alias="extractionMethod")
  title: str | None = None
  model_config = ConfigDict(frozen=True, populate_by_name=True)


class GenerationRequest(BaseModel):
  """Immutable description of one generation intent."""

  kind: GenerationKind
  topic: str = ""
  title: str | None = None
  subject: str | None = None
  grade_level: str | None = Field(default=None, alias="gradeLevel")
  curriculum: str | None = None
  duration_minutes: int | None = Field(default=None, alias="durationMinutes")
  include_quiz: bool = Field(default=False, alias="includeQuiz")
  include_flashcards: bool = Field(default=False, alias="includeFlashcards")
  include_infographic: bool = Field(default=False, alias="includeInfographic")
  include_activities: bool = Field(default=False, alias="includeActivities")
  include_audio: bool = Field(default=False, alias="includeAudio")
  additional_notes: str = Field(default="", alias="additionalNotes")
  lesson_ids: tuple[str, ...] = Field(default=(), alias="lessonIds")
  language: str = "en"
  voice_id: str | None = Field(default=None, alias="voiceId")
  scheduled_date: date | None = Field(default=None, alias="scheduledDate")
  source: UploadedSource | None = None
  model_config = ConfigDict(frozen=True, populate_by_name=True)

  @field_validator("topic", "additional_notes", mode="before")
  @classmethod
  def strip_text(cls, value: object) -> object:
    # Treat whitespace-only input as missing so validation sees an empty field.
    if isinstance(value, str):
      return value.strip()
    return value

  @field_validator("lesson_ids", mode="before")
  @classmethod
  def dedupe_lesson_ids(cls, value: object) -> object:
    # Keep selection order while dropping repeats and blanks.
    if isinstance(value, list | tuple):
      seen: list[str] = []
      for item in value:
        if isinstance(item, str) and item.strip() and item.strip() not in seen:
          seen.append(item.strip())
      return tuple(seen)
    return value

  @property
  def effective_title(self) -> str:
    """Title used for the artifact; falls back to the topic."""
    if self.title and self.title.strip():
      return self.title.strip()
    if self.topic:
      return self.topic
    if self.source is not None and self.source.title:
      return self.source.title
    return "Untitled"
