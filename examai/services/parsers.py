import logging
import os
import tempfile
from typing import BinaryIO

from examai.config import settings
from examai.exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)


class BaseParser:
    """Format-specific text extractor. Subclasses declare the extensions they handle."""

    supported_extensions: tuple[str, ...] = ()

    def supports_file_type(self, file_type: str) -> bool:
        return bool(file_type) and file_type.lower() in self.supported_extensions

    def extract_text(self, stream: BinaryIO, file_type: str) -> str | None:
        raise NotImplementedError

    def _ensure_supported(self, file_type: str) -> None:
        if not self.supports_file_type(file_type):
            raise UnsupportedFormatError(
                f"File type '{file_type}' is not supported by {type(self).__name__}",
                list(self.supported_extensions),
            )


def _read_all(stream: BinaryIO) -> bytes:
    if stream.seekable():
        stream.seek(0)
    data = stream.read()
    if not data:
        raise ValueError("File stream is empty")
    return data


class LlamaParseParser(BaseParser):
    """PDF and office documents through LlamaParse cloud OCR."""

    supported_extensions = (".pdf", ".docx", ".doc", ".xlsx", ".xls")

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key

    def extract_text(self, stream: BinaryIO, file_type: str) -> str:
        self._ensure_supported(file_type)
        try:
            from llama_parse import LlamaParse
        except ImportError as exc:
            raise RuntimeError("llama_parse is not installed") from exc

        api_key = self.api_key or settings.llama_cloud_api_key
        if not api_key:
            raise RuntimeError("LLAMA_CLOUD_API_KEY is missing")

        file_bytes = _read_all(stream)
        parser = LlamaParse(
            api_key=api_key,
            use_vendor_multimodal_model=True,
            vendor_multimodal_model_name="openai-gpt4o",
            high_res_ocr=True,
            result_type="text",
        )
        logger.info("Sending %d bytes to LlamaParse as %s", len(file_bytes), file_type)
        with tempfile.NamedTemporaryFile(suffix=file_type) as tmp:
            tmp.write(file_bytes)
            tmp.flush()
            documents = parser.load_data(tmp.name, extra_info={"file_name": os.path.basename(tmp.name)})
        return "\n\n".join(doc.text for doc in documents)


class PlainTextParser(BaseParser):
    supported_extensions = (".txt", ".csv")

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract_text(self, stream: BinaryIO, file_type: str) -> str:
        self._ensure_supported(file_type)
        return _read_all(stream).decode(self.encoding, errors="replace")


def default_parsers() -> list[BaseParser]:
    return [LlamaParseParser(), PlainTextParser()]
