"""
Tabular file reading and header schema parsing for product imports.

CSV (optionally gzip-compressed) and XLSX files are read into a header row
plus data rows of CellValue keyed by column header. Spreadsheet row numbers
are preserved: the header is row 1, the first data row is row 2.
"""
import csv
import gzip
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from openpyxl import load_workbook

from apps.core.exceptions import ImportSchemaError
from apps.ingestions.type_inference import (
    EMPTY_CELL,
    CellValue,
    extract_type_from_header,
    infer_type_from_value,
)

logger = logging.getLogger(__name__)

ZIP_MAGIC = b'PK\x03\x04'
GZIP_MAGIC = b'\x1f\x8b'
XLSX_CONTENT_TYPES = {
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}


@dataclass
class TabularRow:
    row_number: int
    cells: Dict[str, CellValue]

    def get(self, column_header: Optional[str]) -> CellValue:
        if not column_header:
            return EMPTY_CELL
        return self.cells.get(column_header, EMPTY_CELL)


@dataclass
class TabularData:
    headers: List[str]
    rows: List[TabularRow] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedHeader:
    column_header: str
    clean_name: str
    data_type: str
    type_source: str  # 'explicit' or 'inferred'


class HeaderSchema:
    """Ordered parsed headers, addressable by column header or clean name."""

    def __init__(self, headers: List[ParsedHeader]):
        self.headers = headers
        self._by_column = {h.column_header: h for h in headers}
        self._by_clean_name = {}
        for header in headers:
            self._by_clean_name.setdefault(header.clean_name.lower(), header)

    def __iter__(self):
        return iter(self.headers)

    def __len__(self):
        return len(self.headers)

    def find(self, header: Optional[str]) -> Optional[ParsedHeader]:
        """Resolve a mapping target (a column header as the user typed it) to a parsed header."""
        if not header:
            return None
        header = header.strip()
        if header in self._by_column:
            return self._by_column[header]
        clean_name, _ = extract_type_from_header(header)
        return self._by_clean_name.get(clean_name.lower())


def _is_xlsx(payload: bytes, filename: Optional[str], content_type: Optional[str]) -> bool:
    if filename and filename.lower().endswith(('.xlsx', '.xlsm')):
        return True
    if content_type and content_type.split(';')[0].strip() in XLSX_CONTENT_TYPES:
        return True
    return payload[:4] == ZIP_MAGIC


def _normalise_headers(raw_headers: List) -> List[str]:
    headers = []
    seen = {}
    for index, raw in enumerate(raw_headers):
        header = CellValue.from_raw(raw).as_text().strip()
        if not header:
            header = f"Column {index + 1}"
        if header in seen:
            seen[header] += 1
            header = f"{header} ({seen[header]})"
        else:
            seen[header] = 1
        headers.append(header)
    return headers


def _build_rows(headers: List[str], raw_rows) -> List[TabularRow]:
    rows = []
    for offset, raw_row in enumerate(raw_rows):
        cells = {}
        for index, header in enumerate(headers):
            raw = raw_row[index] if index < len(raw_row) else None
            cells[header] = CellValue.from_raw(raw)
        if all(cell.is_empty for cell in cells.values()):
            continue
        rows.append(TabularRow(row_number=offset + 2, cells=cells))
    return rows


def _read_xlsx(payload: bytes) -> TabularData:
    try:
        workbook = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    except Exception as e:
        raise ImportSchemaError(f"Could not read Excel file: {e}")
    try:
        if not workbook.worksheets:
            raise ImportSchemaError("No worksheet found in Excel file")
        values = list(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()
    if not values:
        raise ImportSchemaError("Excel file has no header row")
    headers = _normalise_headers(list(values[0]))
    return TabularData(headers=headers, rows=_build_rows(headers, values[1:]))


def _read_csv(payload: bytes) -> TabularData:
    try:
        text = payload.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise ImportSchemaError("CSV file must be UTF-8 encoded")
    reader = csv.reader(io.StringIO(text))
    try:
        header_row = next(reader)
    except StopIteration:
        raise ImportSchemaError("CSV file has no header row")
    headers = _normalise_headers(header_row)
    return TabularData(headers=headers, rows=_build_rows(headers, list(reader)))


def read_tabular(payload: bytes, filename: Optional[str] = None,
                 content_type: Optional[str] = None) -> TabularData:
    """
    Read an uploaded product file.
    XLSX is detected by extension, content type or zip signature; gzip-compressed
    CSV by its magic bytes; anything else is parsed as UTF-8 CSV.
    """
    if not payload:
        raise ImportSchemaError("Uploaded file is empty")

    if payload[:2] == GZIP_MAGIC:
        try:
            payload = gzip.decompress(payload)
        except OSError as e:
            raise ImportSchemaError(f"Could not decompress file: {e}")

    if _is_xlsx(payload, filename, content_type):
        data = _read_xlsx(payload)
    else:
        data = _read_csv(payload)

    logger.info(f"Read {len(data.rows)} data rows with {len(data.headers)} columns")
    return data


def parse_headers(headers: List[str], first_row: Optional[TabularRow]) -> HeaderSchema:
    """
    Build the header schema. An explicit "[Type]" annotation wins; otherwise the
    type is inferred from the first data row's value in that column.
    """
    parsed = []
    for column_header in headers:
        clean_name, explicit_type = extract_type_from_header(column_header)
        if explicit_type:
            data_type, source = explicit_type, 'explicit'
        else:
            sample = first_row.get(column_header) if first_row else EMPTY_CELL
            data_type, source = infer_type_from_value(sample), 'inferred'
        parsed.append(ParsedHeader(
            column_header=column_header,
            clean_name=clean_name or column_header,
            data_type=str(data_type),
            type_source=source,
        ))
    return HeaderSchema(parsed)
