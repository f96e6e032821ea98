import logging
import re
from datetime import datetime
from decimal import Decimal

from examai.schemas.extraction import ExamObservation, ExtractionResult, PatientInfo
from examai.schemas.validation import ValidationResult

logger = logging.getLogger(__name__)

VALID_STATUSES = ("normal", "low", "high", "critical")
MAX_PLAUSIBLE_VALUE = Decimal("1000000")
_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def is_valid_iso_date(value: str | None) -> bool:
    if _is_blank(value) or not _ISO_DATE_RE.fullmatch(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def _check_digit(digits: str) -> int:
    weights = range(len(digits) + 1, 1, -1)
    remainder = sum(int(d) * w for d, w in zip(digits, weights)) % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_tax_id(value: str | None) -> bool:
    """Check a Brazilian CPF: 11 digits, not all equal, with both mod-11 check digits matching.

    Punctuation is ignored, so ``"529.982.247-25"`` and ``"52998224725"`` are equivalent.
    """
    if _is_blank(value):
        return False

    digits = re.sub(r"\D", "", value)
    if len(digits) != 11:
        return False
    if len(set(digits)) == 1:
        return False

    first = _check_digit(digits[:9])
    second = _check_digit(digits[:9] + str(first))
    return digits[9:] == f"{first}{second}"


class ConsistencyValidator:
    """Annotates an extraction result with data-quality warnings. Never blocks processing."""

    def validate(self, result: ExtractionResult) -> ValidationResult:
        if result is None:
            raise ValueError("extraction result is required")

        validation = ValidationResult()
        logger.info("Starting validation of extraction result")

        if result.patient is not None:
            self._validate_patient(result.patient, validation)
        else:
            validation.add_warning("patient", "No patient information was extracted")

        if not result.exams:
            validation.add_warning("exams", "No exams were extracted from the document")
        else:
            for index, exam in enumerate(result.exams):
                self._validate_exam(exam, index, validation)

        logger.info("Validation completed: %d warnings found", len(validation.warnings))
        for warning in validation.warnings:
            logger.warning(
                "Validation warning - field: %s, message: %s, value: %s",
                warning.field,
                warning.message,
                warning.current_value if warning.current_value is not None else "null",
            )
        return validation

    def is_valid_tax_id(self, value: str | None) -> bool:
        return is_valid_tax_id(value)

    def _validate_patient(self, patient: PatientInfo, validation: ValidationResult) -> None:
        if _is_blank(patient.name):
            validation.add_warning("patient.name", "Patient name is empty")
        elif len(patient.name) < 3:
            validation.add_warning("patient.name", "Patient name is too short", patient.name)

        if not _is_blank(patient.birth_date) and not is_valid_iso_date(patient.birth_date):
            validation.add_warning(
                "patient.birth_date",
                "Birth date has an invalid format (expected YYYY-MM-DD)",
                patient.birth_date,
            )

        if _is_blank(patient.collection_date):
            validation.add_warning("patient.collection_date", "Collection date was not provided")
        elif not is_valid_iso_date(patient.collection_date):
            validation.add_warning(
                "patient.collection_date",
                "Collection date has an invalid format (expected YYYY-MM-DD)",
                patient.collection_date,
            )

        if _is_blank(patient.requesting_physician):
            validation.add_warning("patient.requesting_physician", "Requesting physician was not provided")

    def _validate_exam(self, exam: ExamObservation, index: int, validation: ValidationResult) -> None:
        prefix = f"exams[{index}]"

        if _is_blank(exam.type):
            validation.add_warning(f"{prefix}.type", "Exam type is empty")
        elif len(exam.type) < 3:
            validation.add_warning(f"{prefix}.type", "Exam type is too short", exam.type)

        if exam.value is None:
            validation.add_warning(f"{prefix}.value", "Exam value was not provided")
        else:
            if exam.value < 0:
                validation.add_warning(f"{prefix}.value", "Negative numeric value may be invalid", str(exam.value))
            if exam.value > MAX_PLAUSIBLE_VALUE:
                validation.add_warning(
                    f"{prefix}.value", "Numeric value is very high and may be an extraction error", str(exam.value)
                )

        if _is_blank(exam.unit):
            validation.add_warning(f"{prefix}.unit", "Unit of measurement was not provided")

        has_min = exam.reference_min is not None
        has_max = exam.reference_max is not None
        if has_min and not has_max:
            validation.add_warning(f"{prefix}.reference", "Reference minimum provided but maximum is missing")
        elif has_max and not has_min:
            validation.add_warning(f"{prefix}.reference", "Reference maximum provided but minimum is missing")
        elif has_min and has_max and exam.reference_min > exam.reference_max:
            validation.add_warning(
                f"{prefix}.reference",
                "Reference minimum is greater than maximum",
                f"min: {exam.reference_min}, max: {exam.reference_max}",
            )

        if _is_blank(exam.status):
            return

        status = exam.status.lower().strip()
        if status not in VALID_STATUSES:
            validation.add_warning(
                f"{prefix}.status",
                f"Invalid status (allowed: {', '.join(VALID_STATUSES)})",
                exam.status,
            )

        # Advisory only: the status is reported, never corrected.
        if exam.value is not None and has_min and has_max:
            in_range = exam.reference_min <= exam.value <= exam.reference_max
            snapshot = f"value: {exam.value}, status: {exam.status}"
            if in_range and status != "normal":
                validation.add_warning(
                    f"{prefix}.status", "Value is within reference but status is not normal", snapshot
                )
            elif not in_range and status == "normal":
                validation.add_warning(
                    f"{prefix}.status", "Value is outside reference but status is normal", snapshot
                )
