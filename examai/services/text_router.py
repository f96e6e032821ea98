import logging
import os
from typing import BinaryIO, Iterable

from examai.exceptions import MissingExtensionError, UnsupportedFormatError
from examai.services.parsers import BaseParser

logger = logging.getLogger(__name__)


def _extension_of(file_name: str) -> str:
    extension = os.path.splitext(file_name)[1]
    if not extension and file_name.startswith(".") and file_name.count(".") == 1:
        # A bare extension such as ".pdf".
        extension = file_name
    return extension.lower()


class TextExtractionRouter:
    """Routes a document to the parser registered for its extension.

    The extension table is resolved once here; when several parsers claim the same
    extension the one registered first keeps it.
    """

    def __init__(self, parsers: Iterable[BaseParser]):
        if parsers is None:
            raise ValueError("parsers are required")
        self.parsers = list(parsers)
        self._by_extension: dict[str, BaseParser] = {}
        for parser in self.parsers:
            for extension in parser.supported_extensions:
                self._by_extension.setdefault(extension.lower(), parser)

    def extract_text(self, stream: BinaryIO, file_name: str) -> str:
        if stream is None:
            raise ValueError("file stream is required")

        parser, extension = self._resolve(file_name)
        logger.info("Using parser %s for file '%s'", type(parser).__name__, file_name)
        try:
            text = parser.extract_text(stream, extension)
        except Exception:
            logger.exception("Failed to extract text from '%s' using %s", file_name, type(parser).__name__)
            raise

        text = text or ""
        logger.info("Extracted %d characters from '%s'", len(text), file_name)
        return text

    def ensure_supported(self, file_name: str) -> None:
        """Raise ``MissingExtensionError`` or ``UnsupportedFormatError`` when no parser accepts the file."""
        self._resolve(file_name)

    def get_supported_formats(self) -> list[str]:
        return sorted(self._by_extension)

    def is_format_supported(self, file_name: str) -> bool:
        if not file_name or not file_name.strip():
            return False
        extension = _extension_of(file_name)
        if not extension or extension == ".":
            return False
        return extension in self._by_extension

    def _resolve(self, file_name: str) -> tuple[BaseParser, str]:
        if not file_name or not file_name.strip():
            raise ValueError("File name cannot be empty")

        extension = os.path.splitext(file_name)[1].lower()
        if not extension or extension == ".":
            logger.error("File '%s' has no extension", file_name)
            raise MissingExtensionError(
                f"Cannot determine file type: '{file_name}' has no extension",
                self.get_supported_formats(),
            )

        parser = self._by_extension.get(extension)
        if parser is None:
            supported = self.get_supported_formats()
            logger.error(
                "No parser found for file type '%s'. Supported formats: %s", extension, ", ".join(supported)
            )
            raise UnsupportedFormatError(
                f"File type '{extension}' is not supported. Supported formats: {', '.join(supported)}",
                supported,
            )
        return parser, extension
