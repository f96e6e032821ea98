import logging

from examai.schemas.extraction import ExtractionResult

logger = logging.getLogger(__name__)

# Ordered (pattern, canonical) pairs. The substring fallback walks this tuple top to bottom and
# the first pattern contained in the raw name wins, so reordering entries changes results.
EXAM_SYNONYMS: tuple[tuple[str, str], ...] = (
    # Lipids
    ("Col. Total", "Colesterol Total"),
    ("Col Total", "Colesterol Total"),
    ("Colesterol", "Colesterol Total"),
    ("HDL", "Colesterol HDL"),
    ("LDL", "Colesterol LDL"),
    ("VLDL", "Colesterol VLDL"),
    # Glucose
    ("Glicemia Jejum", "Glicemia em Jejum"),
    ("Glicose", "Glicemia em Jejum"),
    ("Glicose Jejum", "Glicemia em Jejum"),
    # Liver enzymes
    ("TGO", "TGO (AST)"),
    ("AST", "TGO (AST)"),
    ("TGP", "TGP (ALT)"),
    ("ALT", "TGP (ALT)"),
    # Blood count
    ("Hemácias", "Hemácias (Eritrócitos)"),
    ("Eritrócitos", "Hemácias (Eritrócitos)"),
    ("Leucócitos", "Leucócitos (Glóbulos Brancos)"),
    ("Glóbulos Brancos", "Leucócitos (Glóbulos Brancos)"),
    ("Plaquetas", "Plaquetas (Trombócitos)"),
    ("Trombócitos", "Plaquetas (Trombócitos)"),
    ("Hemoglobina", "Hemoglobina (Hb)"),
    ("Hb", "Hemoglobina (Hb)"),
    ("Hematócrito", "Hematócrito (Ht)"),
    ("Ht", "Hematócrito (Ht)"),
    # Triglycerides
    ("Triglicerídeos", "Triglicerídeos (Triglicérides)"),
    ("Triglicérides", "Triglicerídeos (Triglicérides)"),
    # Kidney
    ("Ureia", "Ureia (Nitrogênio Ureico)"),
    ("Creatinina", "Creatinina Sérica"),
    # Thyroid
    ("TSH", "TSH (Hormônio Tireoestimulante)"),
    ("T4", "T4 Livre (Tiroxina)"),
    ("T4 Livre", "T4 Livre (Tiroxina)"),
)

CANONICAL_EXAM_NAMES: tuple[str, ...] = tuple(dict.fromkeys(canonical for _, canonical in EXAM_SYNONYMS))


def _build_exact_lookup(synonyms: tuple[tuple[str, str], ...]) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for pattern, canonical in synonyms:
        lookup.setdefault(pattern.lower(), canonical)
    # Canonical names map to themselves so a second pass never re-enters the substring scan.
    for canonical in dict.fromkeys(canonical for _, canonical in synonyms):
        lookup.setdefault(canonical.lower(), canonical)
    return lookup


class NameNormalizer:
    """Canonicalizes exam names, units and statuses of an extraction result in place."""

    def __init__(self, synonyms: tuple[tuple[str, str], ...] = EXAM_SYNONYMS):
        self.synonyms = tuple(synonyms)
        self._exact = _build_exact_lookup(self.synonyms)

    def normalize(self, result: ExtractionResult) -> ExtractionResult:
        if result is None:
            raise ValueError("extraction result is required")

        if not result.exams:
            logger.warning("No exams to normalize")
            return result

        normalized_count = 0
        for exam in result.exams:
            original = exam.type
            normalized = self.normalize_exam_name(original)
            if normalized != original:
                logger.debug("Normalized exam name %r -> %r", original, normalized)
                exam.type = normalized
                normalized_count += 1

            if exam.unit and exam.unit.strip():
                exam.unit = exam.unit.strip()

            if exam.status and exam.status.strip():
                exam.status = exam.status.lower().strip()

        logger.info("Normalization completed: %d of %d exam names normalized", normalized_count, len(result.exams))
        return result

    def normalize_exam_name(self, name: str | None) -> str | None:
        if not name or not name.strip():
            return name

        exact = self._exact.get(name.strip().lower())
        if exact is not None:
            return exact

        lowered = name.lower()
        for pattern, canonical in self.synonyms:
            if pattern.lower() in lowered:
                return canonical

        return name.strip()
