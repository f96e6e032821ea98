import json
import logging
import time

from json_repair import repair_json
from pydantic import ValidationError

from examai.config import settings
from examai.exceptions import ExtractionFailedError, MalformedOutputError
from examai.schemas.extraction import ExtractionResult

logger = logging.getLogger(__name__)

EXTRACTION_INSTRUCTIONS = """You are an assistant specialized in extracting information from medical exam documents.

Analyse the text of a medical exam and return the following information as JSON:

1. Patient information (use these exact keys):
   - patient: object with
     - name: patient full name
     - birthDate: birth date (format YYYY-MM-DD, or null when not found)
     - collectionDate: sample collection date (format YYYY-MM-DD)
     - requestingPhysician: name of the physician who requested the exam

2. Exams performed (use these exact keys):
   - exams: array of objects, each with
     - type: exam or parameter name (e.g. "Colesterol Total", "Glicemia", "Hemoglobina")
     - value: numeric result only, without the unit
     - unit: unit of measurement (e.g. "mg/dL", "g/dL", "%")
     - referenceMin: lower bound of the reference range (number or null)
     - referenceMax: upper bound of the reference range (number or null)
     - status: interpretation of the result ("normal", "low", "high", "critical" or null)
     - observations: any additional note (or null)

IMPORTANT:
- Return ONLY valid JSON, with no extra text
- Use the keys EXACTLY as specified above
- Use null when a piece of information is not available
- Dates must use the YYYY-MM-DD format
- Numbers use a dot as the decimal separator (5.2, never 5,2)
- For status, compare the value with the reference range
- Include every exam found in the document
- The JSON must have exactly this structure:

{
  "patient": {
    "name": "string or null",
    "birthDate": "YYYY-MM-DD or null",
    "collectionDate": "YYYY-MM-DD",
    "requestingPhysician": "string or null"
  },
  "exams": [
    {
      "type": "string",
      "value": number or null,
      "unit": "string or null",
      "referenceMin": number or null,
      "referenceMax": number or null,
      "status": "normal|low|high|critical or null",
      "observations": "string or null"
    }
  ]
}"""


class ResponseParseError(ValueError):
    pass


def build_prompt(document_text: str) -> str:
    return (
        f"{EXTRACTION_INSTRUCTIONS}\n\n"
        "Analyse the following medical document text and extract the information as JSON:\n\n"
        f"```\n{document_text}\n```\n\n"
        "Return only the structured JSON as instructed."
    )


def extract_json_payload(response_text: str) -> str:
    """Slice from the first ``{`` to the last ``}``; prose and markdown fences around it are dropped."""
    start = response_text.find("{")
    end = response_text.rfind("}")
    if start >= 0 and end > start:
        return response_text[start : end + 1]
    logger.warning("Could not find JSON delimiters in response, using full text")
    return response_text


def _lower_keys(value):
    if isinstance(value, dict):
        return {str(key).lower(): _lower_keys(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def parse_extraction_result(payload: str) -> ExtractionResult:
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        # Trailing commas and unterminated structures are common in model output.
        parsed = repair_json(payload, return_objects=True)
        if parsed == {}:
            raise ResponseParseError("Response could not be repaired into a JSON object")

    if not isinstance(parsed, dict):
        raise ResponseParseError(f"Expected a JSON object, got {type(parsed).__name__}")

    try:
        return ExtractionResult.model_validate(_lower_keys(parsed))
    except ValidationError as exc:
        raise ResponseParseError(f"Response does not match the extraction schema: {exc}") from exc


class StructuredExtractor:
    """Turns raw document text into an ``ExtractionResult`` through a text-generation model."""

    def __init__(self, llm=None, max_retries: int | None = None, retry_delay_seconds: float | None = None):
        self._llm = llm
        self.max_retries = settings.extraction_max_retries if max_retries is None else max_retries
        self.retry_delay_seconds = (
            settings.extraction_retry_delay_seconds if retry_delay_seconds is None else retry_delay_seconds
        )

    @property
    def llm(self):
        if self._llm is None:
            from examai.services.llm import build_llm

            self._llm = build_llm()
        return self._llm

    def extract(self, document_text: str) -> ExtractionResult:
        if not document_text or not document_text.strip():
            raise ValueError("Document text cannot be empty")

        logger.info("Starting extraction from document text (%d chars)", len(document_text))
        prompt = build_prompt(document_text)
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                logger.debug("Extraction attempt %d/%d", attempt, attempts)
                response = self.llm.complete(prompt)
                response_text = getattr(response, "text", None)
                if response_text is None:
                    response_text = str(response)
                logger.debug("LLM raw response (%d chars): %.500s", len(response_text), response_text)

                result = parse_extraction_result(extract_json_payload(response_text))
                logger.info(
                    "Extraction successful: %d exams found, patient: %s",
                    len(result.exams or []),
                    result.patient.name if result.patient and result.patient.name else "N/A",
                )
                return result
            except ResponseParseError as exc:
                logger.warning("Failed to parse LLM response on attempt %d/%d: %s", attempt, attempts, exc)
                if attempt >= attempts:
                    raise MalformedOutputError(
                        f"Failed to parse LLM response after {attempts} attempts. The response might be malformed."
                    ) from exc
            except Exception as exc:
                logger.error("Unexpected error during extraction on attempt %d/%d: %s", attempt, attempts, exc)
                if attempt >= attempts:
                    raise ExtractionFailedError(f"Extraction failed after {attempts} attempts: {exc}") from exc

            time.sleep(self.retry_delay_seconds)

        raise ExtractionFailedError("Extraction failed after all retries")
