from pydantic import BaseModel, Field, computed_field


class ValidationWarning(BaseModel):
    """Non-blocking data-quality note attached to a field path such as ``exams[2].value``."""
    field: str
    message: str
    current_value: str | None = None


class ValidationResult(BaseModel):
    warnings: list[ValidationWarning] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return len(self.warnings) == 0

    def add_warning(self, field: str, message: str, current_value: str | None = None) -> None:
        self.warnings.append(ValidationWarning(field=field, message=message, current_value=current_value))
