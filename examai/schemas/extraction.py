from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PatientInfo(BaseModel):
    """Patient block as read from the document. Not an identity yet."""
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, description="Patient full name")
    birth_date: str | None = Field(default=None, alias="birthdate", description="Birth date, expected YYYY-MM-DD")
    collection_date: str | None = Field(
        default=None, alias="collectiondate", description="Sample collection date, expected YYYY-MM-DD"
    )
    requesting_physician: str | None = Field(
        default=None, alias="requestingphysician", description="Physician who requested the exams"
    )


class ExamObservation(BaseModel):
    """One measured parameter with its unit, reference range and interpretation."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(default="", description="Exam or parameter name")
    value: Decimal | None = Field(default=None, description="Numeric result")
    unit: str | None = Field(default=None, description="Unit of measurement")
    reference_min: Decimal | None = Field(default=None, alias="referencemin")
    reference_max: Decimal | None = Field(default=None, alias="referencemax")
    status: str | None = Field(default=None, description="normal, low, high or critical")
    observations: str | None = None


class ExtractionResult(BaseModel):
    patient: PatientInfo | None = None
    exams: list[ExamObservation] | None = Field(default_factory=list)
