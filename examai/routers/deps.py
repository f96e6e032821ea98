from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from examai.database import get_db
from examai.pipelines.medical_exam import MedicalExamPipeline, build_default_pipeline
from examai.repositories.exam_store import ExamStore


@lru_cache(maxsize=1)
def _default_pipeline() -> MedicalExamPipeline:
    return build_default_pipeline()


def get_pipeline() -> MedicalExamPipeline:
    return _default_pipeline()


def get_exam_store(db: Session = Depends(get_db)) -> ExamStore:
    return ExamStore(db)
