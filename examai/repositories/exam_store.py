import logging
import os
import re
from datetime import date, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from examai.exceptions import DocumentNotFoundError
from examai.models.document import STATUS_COMPLETED, STATUS_FAILED, STATUS_PROCESSING, Document
from examai.models.exam import Exam, ExamResult, ExamType
from examai.models.patient import Patient
from examai.schemas.extraction import PatientInfo
from examai.schemas.pipeline import PipelineResult

logger = logging.getLogger(__name__)

UNIDENTIFIED_PATIENT_NAME = "Unidentified patient"
DEFAULT_EXAM_CATEGORY = "Other"

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d-%m-%Y", "%Y/%m/%d")


def _safe_date(value: str | None) -> date | None:
    if not value or not value.strip():
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def normalize_tax_id(tax_id: str | None) -> str:
    return re.sub(r"\D", "", tax_id or "")


class ExamStore:
    """Persistence for documents and the exams extracted from them.

    ``save_exam`` writes the patient, exam types, exams and results of one document in a single
    transaction: everything is committed together or rolled back together.
    """

    def __init__(self, db: Session):
        if db is None:
            raise ValueError("db session is required")
        self.db = db

    def register_document(self, file_name: str, size_bytes: int, content_hash: str) -> tuple[Document, bool]:
        """Create the Document row in ``processing`` state, or return the one already holding this hash.

        Returns ``(document, created)``.
        """
        if not content_hash or not content_hash.strip():
            raise ValueError("Hash cannot be empty")

        existing = self.find_document_by_hash(content_hash)
        if existing is not None:
            return existing, False

        document = Document(
            file_name=file_name,
            file_type=os.path.splitext(file_name)[1].lower(),
            size_bytes=size_bytes,
            content_hash=content_hash,
            processing_status=STATUS_PROCESSING,
        )
        self.db.add(document)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request registered the same bytes between our lookup and insert.
            self.db.rollback()
            logger.info("Concurrent upload of hash %s detected, reusing the stored document", content_hash)
            existing = self.find_document_by_hash(content_hash)
            if existing is None:
                raise
            return existing, False

        self.db.refresh(document)
        logger.info("Created document %s for %s", document.id, file_name)
        return document, True

    def mark_failed(self, document_id: str, error_message: str | None) -> Document:
        document = self.db.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document ID {document_id} not found")
        document.processing_status = STATUS_FAILED
        document.processing_error = error_message
        self.db.commit()
        return document

    def save_exam(self, result: PipelineResult, document_id: str, tax_id: str | None = None) -> str:
        """Persist a successful pipeline result against an existing document. Returns the patient id."""
        if result is None:
            raise ValueError("pipeline result is required")
        if result.data is None:
            raise ValueError("pipeline result has no extracted data")

        data = result.data
        logger.info("Saving exam result for document %s", document_id)

        try:
            patient = self._get_or_create_patient(data.patient, normalize_tax_id(tax_id) or None)

            document = self.db.get(Document, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document ID {document_id} not found")
            document.patient = patient
            document.processing_status = STATUS_COMPLETED
            document.processing_error = None

            collection_date = self._collection_datetime(data.patient)
            physician = data.patient.requesting_physician if data.patient else None

            exam_count = 0
            for observation in data.exams or []:
                exam_type = self._get_or_create_exam_type(observation.type)
                exam = Exam(
                    document=document,
                    exam_type=exam_type,
                    collection_date=collection_date,
                    requesting_physician=physician,
                )
                exam.results.append(
                    ExamResult(
                        parameter=observation.type,
                        numeric_value=observation.value,
                        unit=observation.unit,
                        reference_min=observation.reference_min,
                        reference_max=observation.reference_max,
                        status=observation.status,
                        observations=observation.observations,
                    )
                )
                self.db.add(exam)
                exam_count += 1
                logger.debug("Created exam %s: %s %s", observation.type, observation.value, observation.unit or "")

            self.db.commit()
        except Exception:
            logger.exception("Failed to save exam result for document %s", document_id)
            self.db.rollback()
            raise

        logger.info("Saved %d exams for document %s", exam_count, document_id)
        return patient.id

    def find_document_by_hash(self, content_hash: str) -> Document | None:
        if not content_hash or not content_hash.strip():
            raise ValueError("Hash cannot be empty")

        document = (
            self.db.query(Document)
            .options(
                joinedload(Document.patient),
                selectinload(Document.exams).joinedload(Exam.exam_type),
                selectinload(Document.exams).selectinload(Exam.results),
            )
            .filter(Document.content_hash == content_hash)
            .first()
        )
        if document is not None:
            logger.info(
                "Found existing document with hash %s: id %s, status %s",
                content_hash,
                document.id,
                document.processing_status,
            )
        return document

    def get_exams_by_patient(
        self,
        tax_id: str,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        exam_type: str | None = None,
    ) -> list[Exam]:
        digits = normalize_tax_id(tax_id)
        if not digits:
            raise ValueError("Tax id cannot be empty")

        query = (
            self.db.query(Exam)
            .join(Document, Exam.document_id == Document.id)
            .join(Patient, Document.patient_id == Patient.id)
            .options(
                joinedload(Exam.document).joinedload(Document.patient),
                joinedload(Exam.exam_type),
                selectinload(Exam.results),
            )
            .filter(Patient.tax_id == digits)
        )
        if start_date is not None:
            query = query.filter(Exam.collection_date >= _as_datetime(start_date))
        if end_date is not None:
            query = query.filter(Exam.collection_date <= _as_datetime(end_date, end_of_day=True))
        if exam_type and exam_type.strip():
            query = query.join(ExamType, Exam.exam_type_id == ExamType.id).filter(
                ExamType.name.contains(exam_type.strip(), autoescape=True)
            )

        exams = query.order_by(Exam.collection_date.desc()).all()
        logger.info("Found %d exams for tax id %s", len(exams), digits)
        return exams

    def list_exams(self, page: int = 1, limit: int = 20, patient_name: str | None = None) -> tuple[list[Exam], int]:
        limit = max(1, min(limit, 100))
        page = max(1, page)

        query = self.db.query(Exam).join(Document, Exam.document_id == Document.id)
        if patient_name and patient_name.strip():
            query = query.join(Patient, Document.patient_id == Patient.id).filter(
                func.lower(Patient.name).contains(patient_name.strip().lower(), autoescape=True)
            )

        total = query.count()
        exams = (
            query.options(
                joinedload(Exam.document).joinedload(Document.patient),
                joinedload(Exam.exam_type),
                selectinload(Exam.results),
            )
            .order_by(Document.upload_date.desc(), Exam.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return exams, total

    def delete_document(self, document_id: str) -> bool:
        document = self.db.get(Document, document_id)
        if document is None:
            return False
        self.db.delete(document)
        self.db.commit()
        logger.info("Deleted document %s (%s)", document_id, document.file_name)
        return True

    def _get_or_create_patient(self, info: PatientInfo | None, tax_id: str | None) -> Patient:
        name = info.name.strip() if info and info.name and info.name.strip() else UNIDENTIFIED_PATIENT_NAME

        # Identity is the exact name; a tax id only decorates a patient that has none yet.
        patient = self.db.query(Patient).filter(Patient.name == name).first()
        if patient is None:
            patient = Patient(name=name, birth_date=_safe_date(info.birth_date if info else None))
            self.db.add(patient)
            logger.debug("Created new patient: %s", name)
        else:
            logger.debug("Found existing patient: %s", name)

        if tax_id and not patient.tax_id:
            holder = self.db.query(Patient).filter(Patient.tax_id == tax_id).first()
            if holder is None:
                patient.tax_id = tax_id
            else:
                logger.warning(
                    "Tax id %s already belongs to patient %s (%s), not attaching it to %s",
                    tax_id,
                    holder.id,
                    holder.name,
                    name,
                )
        self.db.flush()
        return patient

    def _get_or_create_exam_type(self, name: str) -> ExamType:
        if not name or not name.strip():
            raise ValueError("Exam type name cannot be empty")

        exam_type = self.db.query(ExamType).filter(ExamType.name == name).first()
        if exam_type is None:
            exam_type = (
                self.db.query(ExamType)
                .filter(ExamType.name.contains(name, autoescape=True))
                .order_by(ExamType.id)
                .first()
            )
        if exam_type is not None:
            logger.debug("Found existing exam type: %s", exam_type.name)
            return exam_type

        exam_type = ExamType(name=name, category=DEFAULT_EXAM_CATEGORY)
        self.db.add(exam_type)
        # Flush, not commit: the id is assigned now but the row still rolls back with everything else.
        self.db.flush()
        logger.debug("Created new exam type %s with id %s", name, exam_type.id)
        return exam_type

    def _collection_datetime(self, info: PatientInfo | None) -> datetime:
        raw = info.collection_date if info else None
        parsed = _safe_date(raw)
        if parsed is None:
            if raw:
                logger.warning("Failed to parse collection date %r, using current date", raw)
            return datetime.utcnow()
        return datetime.combine(parsed, datetime.min.time())


def _as_datetime(value: date | datetime, end_of_day: bool = False) -> datetime:
    if isinstance(value, datetime):
        return value
    start = datetime.combine(value, datetime.min.time())
    return start + timedelta(days=1, microseconds=-1) if end_of_day else start
