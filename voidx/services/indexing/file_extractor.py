"""Download uploaded files and extract their text.

The blob is written to a temporary directory that is removed on every exit
path, then parsed by extension.
"""

import re
import tempfile
from pathlib import Path
from typing import List

import pdfplumber
from langchain_core.documents import Document

from voidx.core.exceptions import IndexingError
from voidx.core.interfaces import ObjectStore
from voidx.database.models import UploadFile
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)

TEXT_EXTENSIONS = {"txt", "md", "markdown", "csv", "json", "log", "xml", "yaml", "yml"}
HTML_EXTENSIONS = {"html", "htm"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffe]")
_HTML_TAGS = re.compile(r"<[^>]+>")
_HTML_SKIP = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


def clean_text(text: str) -> str:
    """Normalize model special-token markers and strip control characters.

    ``<|`` becomes ``<`` and ``|>`` becomes ``>``; C0 controls other than
    TAB, LF and CR, DEL and U+FFFE are removed.
    """
    text = text.replace("<|", "<").replace("|>", ">")
    return _CONTROL_CHARS.sub("", text)


def _decode(data: bytes) -> str:
    for encoding in ("utf-8-sig", "gb18030"):
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1")


class FileExtractor:
    """Turns an UploadFile into one or more cleaned LangChain documents."""

    def __init__(self, object_store: ObjectStore):
        self.object_store = object_store

    async def load(self, upload_file: UploadFile) -> List[Document]:
        """Download and parse ``upload_file``.

        Returns:
            Cleaned documents; PDF files yield one document per page

        Raises:
            IndexingError: If the file type is unsupported or parsing fails
        """
        extension = (upload_file.extension or Path(upload_file.key).suffix.lstrip(".")).lower()
        data = await self.object_store.get(upload_file.key)

        with tempfile.TemporaryDirectory(prefix="voidx-") as tmp_dir:
            path = Path(tmp_dir) / f"file.{extension or 'bin'}"
            path.write_bytes(data)
            try:
                documents = self._parse(path, extension)
            except IndexingError:
                raise
            except Exception as e:
                raise IndexingError(f"Failed to parse {upload_file.name}: {str(e)}", original_error=e) from e

        for document in documents:
            document.page_content = clean_text(document.page_content)
            document.metadata.setdefault("upload_file_id", str(upload_file.id))

        LOGGER.info(
            f"Extracted {len(documents)} document(s) from {upload_file.name}",
            extra={"upload_file_id": str(upload_file.id), "extension": extension},
        )
        return documents

    def _parse(self, path: Path, extension: str) -> List[Document]:
        if extension in TEXT_EXTENSIONS or not extension:
            return [Document(page_content=_decode(path.read_bytes()), metadata={"source": path.name})]
        if extension in HTML_EXTENSIONS:
            html = _HTML_SKIP.sub("", _decode(path.read_bytes()))
            return [Document(page_content=_HTML_TAGS.sub("", html), metadata={"source": path.name})]
        if extension == "pdf":
            with pdfplumber.open(path) as pdf:
                return [
                    Document(page_content=page.extract_text() or "", metadata={"page": index + 1})
                    for index, page in enumerate(pdf.pages)
                ]
        raise IndexingError(f"Unsupported file type: {extension}")
