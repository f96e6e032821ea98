import io
import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from examai.config import settings
from examai.models.document import Document
from examai.models.exam import Exam
from examai.pipelines.medical_exam import MedicalExamPipeline
from examai.repositories.exam_store import ExamStore
from examai.routers.deps import get_exam_store, get_pipeline
from examai.services.hashing import compute_sha256
from examai.services.validator import is_valid_tax_id

router = APIRouter(prefix="/api/exams", tags=["exams"])
logger = logging.getLogger(__name__)


def _iso(value):
    return value.isoformat() if value else None


def _number(value):
    return float(value) if value is not None else None


def _patient_payload(patient):
    if patient is None:
        return None
    return {
        "id": patient.id,
        "name": patient.name,
        "tax_id": patient.tax_id,
        "birth_date": _iso(patient.birth_date),
    }


def _exam_payload(exam: Exam) -> dict:
    return {
        "id": exam.id,
        "type": exam.exam_type.name if exam.exam_type else None,
        "category": exam.exam_type.category if exam.exam_type else None,
        "collection_date": _iso(exam.collection_date),
        "requesting_physician": exam.requesting_physician,
        "results": [
            {
                "parameter": r.parameter,
                "value": _number(r.numeric_value),
                "text_value": r.text_value,
                "unit": r.unit,
                "reference_min": _number(r.reference_min),
                "reference_max": _number(r.reference_max),
                "status": r.status,
                "observations": r.observations,
            }
            for r in exam.results
        ],
    }


def _duplicate_payload(document: Document) -> dict:
    return {
        "duplicate": True,
        "document_id": document.id,
        "patient_id": document.patient_id,
        "file_name": document.file_name,
        "status": document.processing_status,
        "processed_at": _iso(document.upload_date),
        "exams": [
            {
                "id": exam.id,
                "type": exam.exam_type.name if exam.exam_type else None,
                "collection_date": _iso(exam.collection_date),
                "results_count": len(exam.results),
            }
            for exam in document.exams
        ],
    }


@router.post("/process-and-save")
async def process_and_save(
    file: UploadFile = File(...),
    tax_id: str | None = Form(default=None),
    pipeline: MedicalExamPipeline = Depends(get_pipeline),
    store: ExamStore = Depends(get_exam_store),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Please upload a file")
    if tax_id and not is_valid_tax_id(tax_id):
        raise HTTPException(status_code=400, detail="Invalid tax id")
    # Raises MissingExtensionError / UnsupportedFormatError, both rendered as 415.
    pipeline.router.ensure_supported(file.filename)

    file_bytes = await file.read()
    max_size_bytes = settings.max_upload_size_mb * 1024 * 1024
    if len(file_bytes) > max_size_bytes:
        raise HTTPException(status_code=400, detail=f"File too large. Max size is {settings.max_upload_size_mb}MB")
    logger.info("Processing and saving exam: %s (%d bytes)", file.filename, len(file_bytes))

    content_hash = compute_sha256(io.BytesIO(file_bytes))
    document, created = store.register_document(file.filename, len(file_bytes), content_hash)
    if not created:
        logger.info("Duplicate document found: hash %s, document %s", content_hash, document.id)
        return {
            "statusCode": 200,
            "message": "Document already processed. Returning stored result.",
            "data": _duplicate_payload(document),
        }

    result = await run_in_threadpool(pipeline.process, io.BytesIO(file_bytes), file.filename)
    if not result.success:
        store.mark_failed(document.id, result.error_message)
        return JSONResponse(
            status_code=500,
            content={
                "statusCode": 500,
                "message": result.error_message or "Processing failed",
                "error": "ProcessingFailed",
                "data": {"document_id": document.id},
            },
        )

    try:
        patient_id = store.save_exam(result, document.id, tax_id=tax_id)
    except Exception as exc:
        store.mark_failed(document.id, f"Persistence error: {exc}")
        raise
    return {
        "statusCode": 200,
        "message": "Document processed successfully",
        "data": {
            "duplicate": False,
            "document_id": document.id,
            "patient_id": patient_id,
            "file_name": result.file_name,
            "file_hash": content_hash,
            "extraction": result.data.model_dump(mode="json") if result.data else None,
            "validation": result.validation.model_dump(mode="json") if result.validation else None,
            "stats": result.stats.model_dump(mode="json"),
        },
    }


@router.get("")
def list_exams(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    patient_name: str | None = Query(default=None),
    store: ExamStore = Depends(get_exam_store),
):
    exams, total = store.list_exams(page=page, limit=limit, patient_name=patient_name)
    items = []
    for exam in exams:
        payload = _exam_payload(exam)
        payload["patient"] = _patient_payload(exam.document.patient)
        payload["document"] = {
            "id": exam.document.id,
            "file_name": exam.document.file_name,
            "upload_date": _iso(exam.document.upload_date),
            "processing_status": exam.document.processing_status,
        }
        items.append(payload)

    return {
        "statusCode": 200,
        "message": "Success",
        "data": {
            "exams": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/patient/{tax_id}")
def exams_by_patient(
    tax_id: str,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    exam_type: str | None = Query(default=None),
    store: ExamStore = Depends(get_exam_store),
):
    try:
        exams = store.get_exams_by_patient(tax_id, start_date, end_date, exam_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not exams:
        raise HTTPException(status_code=404, detail="No exams found for this tax id")

    return {
        "statusCode": 200,
        "message": "Success",
        "data": {
            "patient": _patient_payload(exams[0].document.patient),
            "exams": [_exam_payload(exam) for exam in exams],
            "total": len(exams),
        },
    }


@router.delete("/{document_id}")
def delete_document(document_id: str, store: ExamStore = Depends(get_exam_store)):
    if not store.delete_document(document_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {
        "statusCode": 200,
        "message": "Document deleted",
        "data": {"document_id": document_id},
    }
