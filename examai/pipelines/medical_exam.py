import logging
import time
from datetime import datetime, timezone
from typing import BinaryIO

from examai.schemas.extraction import ExtractionResult
from examai.schemas.pipeline import PipelineResult, ProcessingStats
from examai.schemas.validation import ValidationResult
from examai.services.extractor import StructuredExtractor
from examai.services.normalizer import NameNormalizer
from examai.services.parsers import default_parsers
from examai.services.text_router import TextExtractionRouter
from examai.services.validator import ConsistencyValidator

logger = logging.getLogger(__name__)

STEP_PARSE = "1_parse"
STEP_EXTRACT = "2_extract"
STEP_VALIDATE = "3_validate"
STEP_NORMALIZE = "4_normalize"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stream_size(stream: BinaryIO) -> int:
    try:
        if not stream.seekable():
            return 0
        position = stream.tell()
        stream.seek(0, 2)
        size = stream.tell()
        stream.seek(position)
        return size
    except (AttributeError, OSError, ValueError):
        return 0


class StageFailed(Exception):
    def __init__(self, prefix: str, cause: Exception):
        super().__init__(f"{prefix}: {cause}")
        self.prefix = prefix
        self.cause = cause


class MedicalExamPipeline:
    """Parse -> extract -> validate -> normalize, strictly in order, stopping at the first failure.

    Each stage is timed on its own. Validation warnings never fail a run; they are attached to
    the successful result instead. The pipeline keeps no state between calls, so one instance
    can serve concurrent documents as long as its collaborators can.
    """

    def __init__(
        self,
        router: TextExtractionRouter,
        extractor: StructuredExtractor,
        validator: ConsistencyValidator | None = None,
        normalizer: NameNormalizer | None = None,
    ):
        if router is None or extractor is None:
            raise ValueError("router and extractor are required")
        self.router = router
        self.extractor = extractor
        self.validator = validator or ConsistencyValidator()
        self.normalizer = normalizer or NameNormalizer()

    def process(self, stream: BinaryIO, file_name: str) -> PipelineResult:
        result = PipelineResult(
            file_name=file_name or "",
            file_size=_stream_size(stream) if stream is not None else 0,
            stats=ProcessingStats(started_at=_utcnow()),
        )
        logger.info("Starting pipeline for document: %s", file_name)

        try:
            text = self._run_step(result, STEP_PARSE, "Parse error", self.router.extract_text, stream, file_name)
            result.extracted_text_length = len(text)
            logger.info("Step 1/4 completed: extracted %d characters", len(text))

            data: ExtractionResult = self._run_step(
                result, STEP_EXTRACT, "Extraction error", self.extractor.extract, text
            )
            result.stats.extracted_exams = len(data.exams or [])
            logger.info("Step 2/4 completed: extracted %d exams", result.stats.extracted_exams)

            validation: ValidationResult = self._run_step(
                result, STEP_VALIDATE, "Validation error", self.validator.validate, data
            )
            result.validation = validation
            result.stats.validation_warnings = len(validation.warnings)
            logger.info("Step 3/4 completed: %d warnings found", result.stats.validation_warnings)

            data = self._run_step(result, STEP_NORMALIZE, "Normalization error", self.normalizer.normalize, data)
            result.data = data
            result.stats.normalized_exams = len(data.exams or [])
            logger.info("Step 4/4 completed: %d exams normalized", result.stats.normalized_exams)
        except StageFailed as failure:
            logger.error("Pipeline failed for %s: %s", file_name, failure)
            result.success = False
            result.error_message = str(failure)
            result.stats.completed_at = _utcnow()
            return result

        result.success = True
        result.stats.completed_at = _utcnow()
        logger.info(
            "Pipeline completed for %s: %d exams in %.1fms (%s)",
            file_name,
            result.stats.extracted_exams,
            result.stats.duration_ms,
            ", ".join(f"{step}: {ms:.1f}ms" for step, ms in result.stats.step_durations_ms.items()),
        )
        return result

    def _run_step(self, result: PipelineResult, step: str, error_prefix: str, func, *args):
        started = time.perf_counter()
        try:
            value = func(*args)
        except Exception as exc:
            logger.exception("Pipeline step %s failed", step)
            raise StageFailed(error_prefix, exc) from exc
        result.stats.step_durations_ms[step] = (time.perf_counter() - started) * 1000.0
        return value


def build_default_pipeline() -> MedicalExamPipeline:
    return MedicalExamPipeline(
        router=TextExtractionRouter(default_parsers()),
        extractor=StructuredExtractor(),
        validator=ConsistencyValidator(),
        normalizer=NameNormalizer(),
    )
