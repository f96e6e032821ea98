from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from examai.schemas.extraction import ExtractionResult
from examai.schemas.validation import ValidationResult


class ProcessingStats(BaseModel):
    started_at: datetime
    completed_at: datetime | None = None
    step_durations_ms: dict[str, float] = Field(default_factory=dict)
    extracted_exams: int = 0
    normalized_exams: int = 0
    validation_warnings: int = 0

    @computed_field
    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000.0


class PipelineResult(BaseModel):
    success: bool = False
    error_message: str | None = None
    file_name: str
    file_size: int = 0
    extracted_text_length: int = 0
    data: ExtractionResult | None = None
    validation: ValidationResult | None = None
    stats: ProcessingStats
