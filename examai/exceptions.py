class ExamAIError(Exception):
    """Base class for failures raised by the extraction pipeline and the exam store."""


class UnsupportedFormatError(ExamAIError):
    def __init__(self, message: str, supported_formats: list[str] | None = None):
        super().__init__(message)
        self.supported_formats = list(supported_formats or [])


class MissingExtensionError(UnsupportedFormatError):
    pass


class ExtractionFailedError(ExamAIError):
    """The text-generation round-trip kept failing until the retries ran out."""


class MalformedOutputError(ExtractionFailedError):
    """The model answered, but never with a payload that parses as an extraction result."""


class DocumentNotFoundError(ExamAIError):
    pass
