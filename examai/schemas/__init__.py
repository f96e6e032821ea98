from examai.schemas.extraction import ExamObservation, ExtractionResult, PatientInfo
from examai.schemas.pipeline import PipelineResult, ProcessingStats
from examai.schemas.validation import ValidationResult, ValidationWarning

__all__ = [
    "PatientInfo",
    "ExamObservation",
    "ExtractionResult",
    "ValidationWarning",
    "ValidationResult",
    "ProcessingStats",
    "PipelineResult",
]
