from examai.models.document import Document
from examai.models.exam import Exam, ExamResult, ExamType
from examai.models.patient import Patient

__all__ = [
    "Patient",
    "Document",
    "ExamType",
    "Exam",
    "ExamResult",
]
