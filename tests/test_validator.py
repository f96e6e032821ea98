from decimal import Decimal

import pytest

from examai.schemas.extraction import ExamObservation, ExtractionResult, PatientInfo
from examai.services.validator import ConsistencyValidator, is_valid_iso_date, is_valid_tax_id


def _patient(**overrides) -> PatientInfo:
    fields = {
        "name": "Maria Silva",
        "birth_date": "1980-01-15",
        "collection_date": "2026-02-04",
        "requesting_physician": "Dr. Souza",
    }
    fields.update(overrides)
    return PatientInfo(**fields)


def _exam(**overrides) -> ExamObservation:
    fields = {
        "type": "Glicemia",
        "value": Decimal("90"),
        "unit": "mg/dL",
        "reference_min": Decimal("70"),
        "reference_max": Decimal("99"),
        "status": "normal",
    }
    fields.update(overrides)
    return ExamObservation(**fields)


def _fields(validation) -> list[str]:
    return [warning.field for warning in validation.warnings]


def test_clean_result_has_no_warnings():
    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=[_exam()]))

    assert validation.warnings == []
    assert validation.is_valid is True


def test_validate_requires_a_result():
    with pytest.raises(ValueError):
        ConsistencyValidator().validate(None)


def test_missing_patient_and_exams_are_reported():
    validation = ConsistencyValidator().validate(ExtractionResult(patient=None, exams=[]))

    assert _fields(validation) == ["patient", "exams"]
    assert validation.is_valid is False


def test_null_exam_list_is_reported_like_an_empty_one():
    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=None))

    assert _fields(validation) == ["exams"]


@pytest.mark.parametrize("name, message", [("", "Patient name is empty"), ("Al", "Patient name is too short")])
def test_patient_name_checks(name, message):
    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(name=name), exams=[_exam()]))

    assert _fields(validation) == ["patient.name"]
    assert validation.warnings[0].message == message


@pytest.mark.parametrize("value", ["04/02/2026", "2026/02/04", "2026-02-30", "invalid", "2026-2-4"])
def test_collection_date_must_be_a_real_iso_date(value):
    validation = ConsistencyValidator().validate(
        ExtractionResult(patient=_patient(collection_date=value), exams=[_exam()])
    )

    assert _fields(validation) == ["patient.collection_date"]
    assert validation.warnings[0].current_value == value


def test_missing_collection_date_is_reported():
    validation = ConsistencyValidator().validate(
        ExtractionResult(patient=_patient(collection_date=None), exams=[_exam()])
    )

    assert validation.warnings[0].message == "Collection date was not provided"


def test_birth_date_is_optional_but_checked_when_present():
    validator = ConsistencyValidator()

    absent = validator.validate(ExtractionResult(patient=_patient(birth_date=None), exams=[_exam()]))
    malformed = validator.validate(ExtractionResult(patient=_patient(birth_date="15/01/1980"), exams=[_exam()]))

    assert absent.warnings == []
    assert _fields(malformed) == ["patient.birth_date"]


def test_missing_physician_is_reported():
    validation = ConsistencyValidator().validate(
        ExtractionResult(patient=_patient(requesting_physician=" "), exams=[_exam()])
    )

    assert _fields(validation) == ["patient.requesting_physician"]


@pytest.mark.parametrize(
    "value, message",
    [
        (None, "Exam value was not provided"),
        (Decimal("-5"), "Negative numeric value may be invalid"),
        (Decimal("1000001"), "Numeric value is very high and may be an extraction error"),
    ],
)
def test_value_checks(value, message):
    exam = _exam(value=value, reference_min=None, reference_max=None)

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=[exam]))

    assert _fields(validation) == ["exams[0].value"]
    assert validation.warnings[0].message == message


def test_exam_type_and_unit_checks():
    exams = [_exam(type=""), _exam(type="Hb"), _exam(unit=None)]

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=exams))

    assert _fields(validation) == ["exams[0].type", "exams[1].type", "exams[2].unit"]


@pytest.mark.parametrize(
    "reference_min, reference_max, message",
    [
        (Decimal("70"), None, "Reference minimum provided but maximum is missing"),
        (None, Decimal("99"), "Reference maximum provided but minimum is missing"),
        (Decimal("99"), Decimal("70"), "Reference minimum is greater than maximum"),
    ],
)
def test_reference_range_checks(reference_min, reference_max, message):
    exam = _exam(reference_min=reference_min, reference_max=reference_max, status=None)

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=[exam]))

    assert _fields(validation) == ["exams[0].reference"]
    assert validation.warnings[0].message == message


def test_unknown_status_is_reported():
    validation = ConsistencyValidator().validate(
        ExtractionResult(patient=_patient(), exams=[_exam(status="ok")])
    )

    assert validation.warnings[0].field == "exams[0].status"
    assert validation.warnings[0].message.startswith("Invalid status")
    assert validation.warnings[0].current_value == "ok"


def test_status_comparison_is_case_insensitive():
    validation = ConsistencyValidator().validate(
        ExtractionResult(patient=_patient(), exams=[_exam(status=" NORMAL ")])
    )

    assert validation.warnings == []


def test_out_of_range_value_marked_normal_is_reported():
    exam = _exam(value=Decimal("250"), reference_min=Decimal("50"), reference_max=Decimal("200"), status="normal")

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=[exam]))

    assert _fields(validation) == ["exams[0].status"]
    assert "outside reference but status is normal" in validation.warnings[0].message


def test_in_range_value_marked_high_is_reported():
    exam = _exam(value=Decimal("100"), reference_min=Decimal("50"), reference_max=Decimal("200"), status="high")

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=[exam]))

    assert _fields(validation) == ["exams[0].status"]
    assert "within reference but status is not normal" in validation.warnings[0].message


def test_range_bounds_are_inclusive():
    exams = [_exam(value=Decimal("70")), _exam(value=Decimal("99"))]

    validation = ConsistencyValidator().validate(ExtractionResult(patient=_patient(), exams=exams))

    assert validation.warnings == []


def test_validate_does_not_modify_the_input():
    result = ExtractionResult(patient=_patient(name="Al"), exams=[_exam(status=" HIGH ", unit=None)])
    before = result.model_dump()
    validator = ConsistencyValidator()

    first = validator.validate(result)
    second = validator.validate(result)

    assert result.model_dump() == before
    assert first.model_dump() == second.model_dump()


def test_iso_date_helper():
    assert is_valid_iso_date("2024-02-29") is True
    assert is_valid_iso_date("2023-02-29") is False
    assert is_valid_iso_date("") is False
    assert is_valid_iso_date(None) is False


@pytest.mark.parametrize("value", ["52998224725", "529.982.247-25", " 529.982.247-25 "])
def test_valid_tax_ids(value):
    assert is_valid_tax_id(value) is True
    assert ConsistencyValidator().is_valid_tax_id(value) is True


@pytest.mark.parametrize(
    "value",
    [
        "62998224725",  # body changed, check digits stale
        "52998224735",  # first check digit wrong
        "52998224726",  # second check digit wrong
        "11111111111",
        "5299822472",
        "529982247250",
        "",
        None,
    ],
)
def test_invalid_tax_ids(value):
    assert is_valid_tax_id(value) is False


VALID_TAX_ID = "52998224725"


@pytest.mark.parametrize(
    "mutated",
    [
        VALID_TAX_ID[:position] + digit + VALID_TAX_ID[position + 1 :]
        for position in range(len(VALID_TAX_ID))
        for digit in "0123456789"
        if digit != VALID_TAX_ID[position]
    ],
)
def test_any_single_digit_change_invalidates_tax_id(mutated):
    assert is_valid_tax_id(mutated) is False
