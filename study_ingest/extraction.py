"""
Text extraction for uploaded study materials.

Plain text and Markdown are read locally. PDF, Word, PowerPoint and HTML
go through the Unstructured partition API when UNSTRUCTURED_API_KEY is
set. Unknown formats (and EPUB) raise UnsupportedFormat; any failure while
reading or partitioning raises ExtractionFailed.
"""
import math
import os
import pathlib
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import unstructured_client
from unstructured_client.models import operations, shared

from .errors import ExtractionError, ExtractionFailed, UnsupportedFormat
from .log import get_logger
from .models import ExtractedDocument
from .retry import RetryPolicy

logger = get_logger(__name__)

WORDS_PER_PAGE = 500

MIME_FORMATS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "text/plain": "txt",
    "text/markdown": "md",
    "text/html": "html",
    "application/epub+zip": "epub",
}

EXTENSION_FORMATS = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
    ".pptx": "pptx",
    ".txt": "txt",
    ".md": "md",
    ".markdown": "md",
    ".html": "html",
    ".htm": "html",
    ".epub": "epub",
}

PLAIN_TEXT_FORMATS = frozenset({"txt", "md"})
PARTITION_FORMATS = frozenset({"pdf", "docx", "doc", "pptx", "html", "txt", "md"})


def resolve_format(file_path: str, mime_type: Optional[str]) -> str:
    """
    Map a MIME type (or, failing that, the file extension) to a short format name.

    Raises:
        UnsupportedFormat: Neither the MIME type nor the extension is known
    """
    mime = (mime_type or "").lower().split(";")[0].strip()
    if mime in MIME_FORMATS:
        return MIME_FORMATS[mime]
    if mime in EXTENSION_FORMATS.values():
        return mime
    ext = pathlib.Path(file_path).suffix.lower()
    if ext in EXTENSION_FORMATS:
        return EXTENSION_FORMATS[ext]
    raise UnsupportedFormat(f"Unsupported file type: {mime_type or ext or 'unknown'}")


def estimate_page_count(text: str) -> int:
    words = len(text.split())
    return max(1, math.ceil(words / WORDS_PER_PAGE))


class Extractor(ABC):
    @abstractmethod
    def extract(self, file_path: str, mime_type: Optional[str] = None) -> ExtractedDocument:
        """Return text, page count and metadata for a file."""


class PlainTextExtractor(Extractor):
    """Reads TXT/Markdown from disk; page count estimated at 500 words per page."""

    def extract(self, file_path: str, mime_type: Optional[str] = None) -> ExtractedDocument:
        fmt = resolve_format(file_path, mime_type)
        if fmt not in PLAIN_TEXT_FORMATS:
            raise UnsupportedFormat(f"Plain text extractor cannot read {fmt}")
        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                text = f.read()
        except OSError as e:
            raise ExtractionFailed(f"Failed to read {file_path}: {e}")
        return ExtractedDocument(text=text, page_count=estimate_page_count(text), metadata={"format": fmt})


class UnstructuredExtractor(Extractor):
    """Extracts text through the hosted Unstructured partition API."""

    provider_name = "unstructured"

    def __init__(self, api_key: str, retry_policy: Optional[RetryPolicy] = None, client=None):
        self.client = client or unstructured_client.UnstructuredClient(api_key_auth=api_key)
        self.retry_policy = retry_policy or RetryPolicy()

    def _get_optimal_parameters(self, fmt: str) -> Dict[str, Any]:
        """Get optimal partition parameters for a format"""
        params: Dict[str, Any] = {"languages": ["eng"]}

        if fmt == "pdf":
            params.update({
                "strategy": shared.Strategy.HI_RES,
                "pdf_infer_table_structure": True,
                "split_pdf_page": True,
                "split_pdf_allow_failed": True,
                "split_pdf_concurrency_level": 10,
            })
        elif fmt in ("docx", "doc", "pptx"):
            params.update({
                "strategy": shared.Strategy.HI_RES,
                "infer_table_structure": True,
            })
        elif fmt in PLAIN_TEXT_FORMATS:
            params.update({"strategy": shared.Strategy.FAST})
        else:
            params.update({"strategy": shared.Strategy.AUTO})

        return params

    def _partition(self, file_path: str, fmt: str) -> List[Dict[str, Any]]:
        with open(file_path, "rb") as file_content:
            req = operations.PartitionRequest(
                partition_parameters=shared.PartitionParameters(
                    files=shared.Files(
                        content=file_content.read(),
                        file_name=os.path.basename(file_path),
                    ),
                    **self._get_optimal_parameters(fmt)
                ),
            )
        res = self.client.general.partition(request=req)
        return [element for element in res.elements or []]

    @staticmethod
    def elements_to_document(elements: List[Dict[str, Any]], fmt: str) -> ExtractedDocument:
        """Join element texts with blank lines; page count is the highest page number seen."""
        texts = []
        pages = []
        for element in elements:
            text = (element.get("text") or "").strip()
            if text:
                texts.append(text)
            page = (element.get("metadata") or {}).get("page_number")
            if isinstance(page, int):
                pages.append(page)
        text = "\n\n".join(texts)
        page_count = max(pages) if pages else estimate_page_count(text)
        return ExtractedDocument(
            text=text,
            page_count=page_count,
            metadata={"format": fmt, "elements": len(elements)},
        )

    def extract(self, file_path: str, mime_type: Optional[str] = None) -> ExtractedDocument:
        fmt = resolve_format(file_path, mime_type)
        if fmt not in PARTITION_FORMATS:
            raise UnsupportedFormat(f"{fmt.upper()} processing not yet implemented", provider_name=self.provider_name)
        try:
            elements = self.retry_policy.call(self._partition, file_path, fmt, operation="partition")
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionFailed(f"Failed to process {fmt.upper()} file: {e}", provider_name=self.provider_name)
        return self.elements_to_document(elements, fmt)


class CompositeExtractor(Extractor):
    """Routes plain text locally and everything else to Unstructured when configured."""

    def __init__(self, plain: Optional[PlainTextExtractor] = None, partitioner: Optional[UnstructuredExtractor] = None):
        self.plain = plain or PlainTextExtractor()
        self.partitioner = partitioner

    def extract(self, file_path: str, mime_type: Optional[str] = None) -> ExtractedDocument:
        fmt = resolve_format(file_path, mime_type)
        if fmt in PLAIN_TEXT_FORMATS:
            return self.plain.extract(file_path, fmt)
        if fmt not in PARTITION_FORMATS:
            raise UnsupportedFormat(f"{fmt.upper()} processing not yet implemented")
        if self.partitioner is None:
            raise UnsupportedFormat(f"{fmt.upper()} extraction requires UNSTRUCTURED_API_KEY")
        return self.partitioner.extract(file_path, fmt)


def create_extractor(settings, retry_policy: Optional[RetryPolicy] = None) -> Extractor:
    partitioner = None
    if settings.unstructured_api_key:
        partitioner = UnstructuredExtractor(settings.unstructured_api_key, retry_policy=retry_policy)
    else:
        logger.info("unstructured_unconfigured", supported=sorted(PLAIN_TEXT_FORMATS))
    return CompositeExtractor(partitioner=partitioner)
