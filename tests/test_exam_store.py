from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from examai.exceptions import DocumentNotFoundError
from examai.models import Document, Exam, ExamResult, ExamType, Patient
from examai.repositories.exam_store import DEFAULT_EXAM_CATEGORY, UNIDENTIFIED_PATIENT_NAME, ExamStore
from examai.schemas.extraction import ExamObservation, ExtractionResult, PatientInfo
from examai.schemas.pipeline import PipelineResult, ProcessingStats
from examai.seed.exam_type_seed import EXAM_TYPES, seed_exam_types

_DEFAULT_PATIENT = {
    "name": "Maria Silva",
    "birth_date": "1980-01-15",
    "collection_date": "2026-02-04",
    "requesting_physician": "Dr. Souza",
}


def _pipeline_result(patient=_DEFAULT_PATIENT, exams=None) -> PipelineResult:
    if exams is None:
        exams = [
            {"type": "Colesterol HDL", "value": Decimal("55"), "unit": "mg/dL", "reference_min": 40,
             "reference_max": 60, "status": "normal"},
            {"type": "Glicemia em Jejum", "value": Decimal("92.5"), "unit": "mg/dL", "status": "normal",
             "observations": "Jejum de 8 horas"},
        ]
    data = ExtractionResult(
        patient=PatientInfo(**patient) if patient is not None else None,
        exams=[ExamObservation(**exam) for exam in exams],
    )
    return PipelineResult(
        success=True,
        file_name="laudo.txt",
        data=data,
        stats=ProcessingStats(started_at=datetime.now(timezone.utc)),
    )


def _register(store: ExamStore, content_hash: str = "a" * 64, file_name: str = "laudo.txt") -> Document:
    document, created = store.register_document(file_name, 128, content_hash)
    assert created is True
    return document


def test_register_document_starts_processing(db_session):
    store = ExamStore(db_session)

    document = _register(store)

    assert document.processing_status == "processing"
    assert document.file_type == ".txt"
    assert document.size_bytes == 128
    assert document.patient_id is None


def test_register_document_returns_existing_row_for_same_hash(db_session):
    store = ExamStore(db_session)
    first = _register(store)

    second, created = store.register_document("renamed.pdf", 128, "a" * 64)

    assert created is False
    assert second.id == first.id
    assert second.file_name == "laudo.txt"
    assert db_session.query(Document).count() == 1


def test_register_document_recovers_from_concurrent_insert(db_session, monkeypatch):
    store = ExamStore(db_session)
    winner = _register(store)
    real_find = store.find_document_by_hash
    lookups = []

    def racing_find(content_hash):
        # The first lookup runs before the other request committed.
        lookups.append(content_hash)
        return None if len(lookups) == 1 else real_find(content_hash)

    monkeypatch.setattr(store, "find_document_by_hash", racing_find)

    document, created = store.register_document("laudo.txt", 128, "a" * 64)

    assert created is False
    assert document.id == winner.id
    assert len(lookups) == 2
    assert db_session.query(Document).count() == 1


def test_save_exam_writes_everything_and_completes_document(db_session):
    store = ExamStore(db_session)
    document = _register(store)

    patient_id = store.save_exam(_pipeline_result(), document.id)

    patient = db_session.get(Patient, patient_id)
    assert patient.name == "Maria Silva"
    assert patient.birth_date == date(1980, 1, 15)
    assert patient.tax_id is None

    db_session.refresh(document)
    assert document.processing_status == "completed"
    assert document.processing_error is None
    assert document.patient_id == patient_id

    exams = db_session.query(Exam).filter(Exam.document_id == document.id).all()
    assert len(exams) == 2
    assert {exam.collection_date for exam in exams} == {datetime(2026, 2, 4)}
    assert {exam.requesting_physician for exam in exams} == {"Dr. Souza"}

    glucose = db_session.query(ExamResult).filter(ExamResult.parameter == "Glicemia em Jejum").one()
    assert glucose.numeric_value == Decimal("92.5")
    assert glucose.unit == "mg/dL"
    assert glucose.reference_min is None
    assert glucose.observations == "Jejum de 8 horas"


def test_patients_are_reused_by_exact_name(db_session):
    store = ExamStore(db_session)
    first = store.save_exam(_pipeline_result(), _register(store, "a" * 64).id)
    second = store.save_exam(_pipeline_result(), _register(store, "b" * 64).id)
    other = store.save_exam(
        _pipeline_result(patient=dict(_DEFAULT_PATIENT, name="Maria Silva Santos")), _register(store, "c" * 64).id
    )

    assert first == second
    assert other != first
    assert db_session.query(Patient).count() == 2


def test_missing_patient_name_uses_placeholder(db_session):
    store = ExamStore(db_session)

    patient_id = store.save_exam(_pipeline_result(patient=None), _register(store).id)

    assert db_session.get(Patient, patient_id).name == UNIDENTIFIED_PATIENT_NAME


def test_tax_id_is_stored_as_digits(db_session):
    store = ExamStore(db_session)

    patient_id = store.save_exam(_pipeline_result(), _register(store).id, tax_id="529.982.247-25")

    assert db_session.get(Patient, patient_id).tax_id == "52998224725"


def test_tax_id_held_by_another_patient_is_not_reattached(db_session):
    store = ExamStore(db_session)
    first_id = store.save_exam(_pipeline_result(), _register(store, "a" * 64).id, tax_id="529.982.247-25")
    other = dict(_DEFAULT_PATIENT, name="Maria S. Silva")
    document = _register(store, "b" * 64)

    second_id = store.save_exam(_pipeline_result(patient=other), document.id, tax_id="52998224725")

    assert second_id != first_id
    assert db_session.get(Patient, first_id).tax_id == "52998224725"
    assert db_session.get(Patient, second_id).tax_id is None
    db_session.refresh(document)
    assert document.processing_status == "completed"
    assert db_session.query(Exam).filter(Exam.document_id == document.id).count() == 2


def test_dates_are_parsed_leniently(db_session):
    store = ExamStore(db_session)
    patient = dict(_DEFAULT_PATIENT, birth_date="not a date", collection_date="10/01/2026")

    patient_id = store.save_exam(_pipeline_result(patient=patient), _register(store).id)

    assert db_session.get(Patient, patient_id).birth_date is None
    assert {exam.collection_date for exam in db_session.query(Exam)} == {datetime(2026, 1, 10)}


def test_unparseable_collection_date_falls_back_to_now(db_session):
    store = ExamStore(db_session)
    patient = dict(_DEFAULT_PATIENT, collection_date="sometime last week")
    before = datetime.utcnow() - timedelta(seconds=1)

    store.save_exam(_pipeline_result(patient=patient), _register(store).id)

    collected = db_session.query(Exam).first().collection_date
    assert before <= collected <= datetime.utcnow() + timedelta(seconds=1)


def test_seeded_exam_types_are_reused(db_session):
    assert seed_exam_types(db_session) == len(EXAM_TYPES)
    assert seed_exam_types(db_session) == 0
    store = ExamStore(db_session)

    store.save_exam(_pipeline_result(), _register(store).id)

    assert db_session.query(ExamType).count() == len(EXAM_TYPES)
    hdl = db_session.query(ExamType).filter(ExamType.name == "Colesterol HDL").one()
    assert hdl.category == "Lipidograma"
    assert len(hdl.exams) == 1


def test_exam_type_falls_back_to_containment_match(db_session):
    seed_exam_types(db_session)
    store = ExamStore(db_session)
    exams = [{"type": "HDL", "value": Decimal("55"), "unit": "mg/dL"}]

    store.save_exam(_pipeline_result(exams=exams), _register(store).id)

    exam = db_session.query(Exam).one()
    assert exam.exam_type.name == "Colesterol HDL"
    assert exam.results[0].parameter == "HDL"


def test_unknown_exam_type_is_created_in_default_category(db_session):
    store = ExamStore(db_session)
    exams = [{"type": "Vitamina D", "value": Decimal("31"), "unit": "ng/mL"}]

    store.save_exam(_pipeline_result(exams=exams), _register(store).id)

    created = db_session.query(ExamType).one()
    assert created.name == "Vitamina D"
    assert created.category == DEFAULT_EXAM_CATEGORY


def test_missing_document_rolls_back_patient(db_session):
    store = ExamStore(db_session)

    with pytest.raises(DocumentNotFoundError):
        store.save_exam(_pipeline_result(), "does-not-exist")

    assert db_session.query(Patient).count() == 0
    assert db_session.query(ExamType).count() == 0


def test_failure_mid_write_leaves_nothing_behind(db_session):
    store = ExamStore(db_session)
    document = _register(store)
    exams = [
        {"type": "Vitamina D", "value": Decimal("31"), "unit": "ng/mL"},
        {"type": "", "value": Decimal("1"), "unit": "mg/dL"},
    ]

    with pytest.raises(ValueError):
        store.save_exam(_pipeline_result(exams=exams), document.id)

    assert db_session.query(Patient).count() == 0
    assert db_session.query(ExamType).count() == 0
    assert db_session.query(Exam).count() == 0
    assert db_session.get(Document, document.id).processing_status == "processing"


def test_save_exam_requires_extracted_data(db_session):
    store = ExamStore(db_session)
    failed = PipelineResult(file_name="x.txt", stats=ProcessingStats(started_at=datetime.now(timezone.utc)))

    with pytest.raises(ValueError):
        store.save_exam(failed, _register(store).id)


def test_mark_failed_records_error(db_session):
    store = ExamStore(db_session)
    document = _register(store)

    store.mark_failed(document.id, "Extraction error: model unavailable")

    db_session.refresh(document)
    assert document.processing_status == "failed"
    assert document.processing_error == "Extraction error: model unavailable"

    with pytest.raises(DocumentNotFoundError):
        store.mark_failed("missing", "boom")


def test_find_document_by_hash(db_session):
    store = ExamStore(db_session)
    document = _register(store)
    store.save_exam(_pipeline_result(), document.id)

    found = store.find_document_by_hash("a" * 64)

    assert found.id == document.id
    assert found.patient.name == "Maria Silva"
    assert len(found.exams) == 2
    assert store.find_document_by_hash("f" * 64) is None
    with pytest.raises(ValueError):
        store.find_document_by_hash("  ")


def test_get_exams_by_patient_filters_and_orders(db_session):
    store = ExamStore(db_session)
    january = dict(_DEFAULT_PATIENT, collection_date="2026-01-10")
    store.save_exam(_pipeline_result(patient=january), _register(store, "a" * 64).id, tax_id="52998224725")
    store.save_exam(_pipeline_result(), _register(store, "b" * 64).id)

    everything = store.get_exams_by_patient("529.982.247-25")
    assert len(everything) == 4
    assert everything[0].collection_date == datetime(2026, 2, 4)
    assert everything[-1].collection_date == datetime(2026, 1, 10)

    february = store.get_exams_by_patient("52998224725", start_date=date(2026, 2, 1))
    assert {exam.collection_date for exam in february} == {datetime(2026, 2, 4)}

    until_january = store.get_exams_by_patient("52998224725", end_date=date(2026, 1, 10))
    assert {exam.collection_date for exam in until_january} == {datetime(2026, 1, 10)}

    hdl = store.get_exams_by_patient("52998224725", exam_type="HDL")
    assert [exam.exam_type.name for exam in hdl] == ["Colesterol HDL", "Colesterol HDL"]

    assert store.get_exams_by_patient("11144477735") == []
    with pytest.raises(ValueError):
        store.get_exams_by_patient("---")


def test_list_exams_paginates_and_filters_by_patient(db_session):
    store = ExamStore(db_session)
    exams = [{"type": name, "value": Decimal("1"), "unit": "mg/dL"} for name in ("Ureia", "Creatinina", "TSH")]
    store.save_exam(_pipeline_result(exams=exams), _register(store).id)

    page_one, total = store.list_exams(page=1, limit=2)
    page_two, _ = store.list_exams(page=2, limit=2)

    assert total == 3
    assert len(page_one) == 2
    assert len(page_two) == 1
    assert store.list_exams(patient_name="maria")[1] == 3
    assert store.list_exams(patient_name="Joao")[1] == 0


def test_delete_document_cascades_to_exams(db_session):
    store = ExamStore(db_session)
    document = _register(store)
    store.save_exam(_pipeline_result(), document.id)

    assert store.delete_document(document.id) is True

    assert db_session.query(Document).count() == 0
    assert db_session.query(Exam).count() == 0
    assert db_session.query(ExamResult).count() == 0
    assert db_session.query(Patient).count() == 1
    assert store.delete_document(document.id) is False
