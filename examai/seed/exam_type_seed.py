from sqlalchemy.orm import Session

from examai.database import SessionLocal
from examai.models.exam import ExamType


EXAM_TYPES = [
    {"name": "Hemograma Completo", "category": "Hematologia"},
    {"name": "Hemácias (Eritrócitos)", "category": "Hematologia"},
    {"name": "Leucócitos (Glóbulos Brancos)", "category": "Hematologia"},
    {"name": "Plaquetas (Trombócitos)", "category": "Hematologia"},
    {"name": "Hemoglobina (Hb)", "category": "Hematologia"},
    {"name": "Hematócrito (Ht)", "category": "Hematologia"},
    {"name": "Glicemia em Jejum", "category": "Bioquímica"},
    {"name": "Colesterol Total", "category": "Lipidograma"},
    {"name": "Colesterol HDL", "category": "Lipidograma"},
    {"name": "Colesterol LDL", "category": "Lipidograma"},
    {"name": "Colesterol VLDL", "category": "Lipidograma"},
    {"name": "Triglicerídeos (Triglicérides)", "category": "Lipidograma"},
    {"name": "Ureia (Nitrogênio Ureico)", "category": "Função Renal"},
    {"name": "Creatinina Sérica", "category": "Função Renal"},
    {"name": "TGO (AST)", "category": "Função Hepática"},
    {"name": "TGP (ALT)", "category": "Função Hepática"},
    {"name": "TSH (Hormônio Tireoestimulante)", "category": "Tireoide"},
    {"name": "T4 Livre (Tiroxina)", "category": "Tireoide"},
]


def seed_exam_types(db: Session | None = None) -> int:
    """Upsert the reference exam types by name. Returns how many rows were inserted."""
    owns_session = db is None
    db = db or SessionLocal()
    try:
        existing = {row.name: row for row in db.query(ExamType).all()}
        inserted = 0
        for item in EXAM_TYPES:
            match = existing.get(item["name"])
            if match:
                match.category = item["category"]
                continue
            db.add(ExamType(name=item["name"], category=item["category"]))
            inserted += 1
        db.commit()
        return inserted
    finally:
        if owns_session:
            db.close()
