"""Format extractor - convert an uploaded blob into plain text.

Dispatch is by declared media type first and filename extension second.
Extraction failures never propagate: every public entry point returns None
for unreadable input and logs the reason.
"""

import csv
import io
import logging
from collections.abc import Callable
from enum import Enum
from pathlib import PurePosixPath

import openpyxl
import xlrd
from docx import Document
from pypdf import PdfReader

from backend.assistant.utils.metrics import extraction_failures_total

logger = logging.getLogger(__name__)

DEFAULT_MAX_SHEETS = 5

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
LEGACY_EXCEL_MEDIA_TYPE = "application/vnd.ms-excel"

SPREADSHEET_MEDIA_TYPES = {
    XLSX_MEDIA_TYPE,
    LEGACY_EXCEL_MEDIA_TYPE,
    "application/vnd.oasis.opendocument.spreadsheet",
    "application/x-excel",
    "application/excel",
}

# Zip local file header; OOXML containers start with it
_ZIP_MAGIC = b"PK\x03\x04"


class ExtractionError(Exception):
    """Content is well-formed but cannot be turned into text."""

    pass


class FormatCategory(str, Enum):
    """Extraction method selected for a blob."""

    text = "text"
    pdf = "pdf"
    docx = "docx"
    spreadsheet = "spreadsheet"
    unknown = "unknown"


_EXTENSION_CATEGORIES = {
    ".txt": FormatCategory.text,
    ".json": FormatCategory.text,
    ".md": FormatCategory.text,
    ".pdf": FormatCategory.pdf,
    ".docx": FormatCategory.docx,
    ".xlsx": FormatCategory.spreadsheet,
    ".xls": FormatCategory.spreadsheet,
    ".csv": FormatCategory.spreadsheet,
}


def _normalize_media_type(media_type: str | None) -> str:
    """Lowercase and strip parameters such as `; charset=utf-8`."""
    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


def _get_extension(filename: str | None) -> str:
    if not filename:
        return ""
    return PurePosixPath(filename).suffix.lower()


def classify(media_type: str | None, filename: str | None) -> FormatCategory:
    """Pick the extraction category for a blob.

    Args:
        media_type: Declared media type (may be None or carry parameters)
        filename: Fallback filename used for its extension

    Returns:
        FormatCategory, `unknown` when neither hint is recognized
    """
    mt = _normalize_media_type(media_type)

    if mt.startswith("text/") or mt == "application/json":
        return FormatCategory.text
    if mt == "application/pdf":
        return FormatCategory.pdf
    if mt == DOCX_MEDIA_TYPE:
        return FormatCategory.docx
    if mt in SPREADSHEET_MEDIA_TYPES:
        return FormatCategory.spreadsheet

    return _EXTENSION_CATEGORIES.get(_get_extension(filename), FormatCategory.unknown)


def _decode_utf8(data: bytes) -> str:
    """Decode strictly as UTF-8, tolerating a byte order mark."""
    return data.decode("utf-8-sig")


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    if reader.is_encrypted:
        raise ExtractionError("PDF is encrypted")
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p.strip() for p in pages if p.strip())


def _extract_docx(data: bytes) -> str:
    document = Document(io.BytesIO(data))
    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                lines.append("\t".join(cells))
    return "\n".join(lines)


def _rows_to_csv(rows: list[list[object]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().rstrip("\n")


def _render_sheets(sheets: list[tuple[str, list[list[object]]]]) -> str:
    blocks = [f"# Sheet: {name}\n{_rows_to_csv(rows)}".rstrip() for name, rows in sheets]
    return "\n\n".join(blocks)


def _extract_xlsx(data: bytes, max_sheets: int) -> str:
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheets = [
            (sheet.title, [list(row) for row in sheet.iter_rows(values_only=True)])
            for sheet in workbook.worksheets[:max_sheets]
        ]
    finally:
        workbook.close()
    return _render_sheets(sheets)


def _extract_xls(data: bytes, max_sheets: int) -> str:
    workbook = xlrd.open_workbook(file_contents=data)
    sheets = []
    for index in range(min(workbook.nsheets, max_sheets)):
        sheet = workbook.sheet_by_index(index)
        rows = [sheet.row_values(r) for r in range(sheet.nrows)]
        sheets.append((sheet.name, rows))
    return _render_sheets(sheets)


def _extract_csv(data: bytes, filename: str | None) -> str:
    text = _decode_utf8(data)
    rows: list[list[object]] = [list(row) for row in csv.reader(io.StringIO(text))]
    name = PurePosixPath(filename).stem if filename else "Sheet1"
    return _render_sheets([(name, rows)])


def _extract_spreadsheet(data: bytes, filename: str | None, max_sheets: int) -> str:
    if data.startswith(_ZIP_MAGIC):
        return _extract_xlsx(data, max_sheets)
    if _get_extension(filename) == ".csv":
        return _extract_csv(data, filename)
    return _extract_xls(data, max_sheets)


def extract_text(
    data: bytes,
    media_type: str | None,
    filename: str | None = None,
    *,
    max_sheets: int = DEFAULT_MAX_SHEETS,
) -> str | None:
    """Extract plain text from a document blob.

    Args:
        data: Raw file bytes
        media_type: Declared media type
        filename: Fallback filename (extension used when the type is unknown)
        max_sheets: Spreadsheet sheets to render (default 5)

    Returns:
        Extracted text, or None if the content could not be read
    """
    category = classify(media_type, filename)

    extractors: dict[FormatCategory, Callable[[], str]] = {
        FormatCategory.text: lambda: _decode_utf8(data),
        FormatCategory.pdf: lambda: _extract_pdf(data),
        FormatCategory.docx: lambda: _extract_docx(data),
        FormatCategory.spreadsheet: lambda: _extract_spreadsheet(data, filename, max_sheets),
        FormatCategory.unknown: lambda: _decode_utf8(data),
    }

    try:
        return extractors[category]()
    except Exception as e:
        extraction_failures_total.labels(category=category.value).inc()
        logger.warning(
            f"Extraction failed for {filename or 'blob'} "
            f"(category={category.value}, media_type={media_type}): {type(e).__name__}: {e}"
        )
        return None
