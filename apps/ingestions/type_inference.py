"""
Type inference and value conversion for imported spreadsheet cells.

Inference is a fixed, ordered list of heuristics applied to the string form
of a value. It is total: every input, including None, maps to a data type.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Tuple

from apps.attributes.models import AttributeDataType

BOOLEAN_LITERALS = {'true', 'false', '1', '0', 'yes', 'no'}
TRUE_LITERALS = {'true', '1', 'yes', 'y'}
FALSE_LITERALS = {'false', '0', 'no', 'n'}

INTEGER_PATTERN = re.compile(r'^-?\d+$')
DECIMAL_PATTERN = re.compile(r'^-?\d*\.\d+$')
ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
US_DATE_PATTERN = re.compile(r'^\d{1,2}/\d{1,2}/\d{4}$')
HEADER_TYPE_PATTERN = re.compile(r'^(.+?)\s*\[\s*(.+?)\s*\]\s*$')

SHORT_TEXT_MAX_LENGTH = 255

# Excel stores dates as days since 1899-12-30; 25569 is 1970-01-01.
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 25569
EXCEL_SERIAL_MAX = 73050

HEADER_TYPE_ALIASES = {
    'short text': AttributeDataType.SHORT_TEXT,
    'shorttext': AttributeDataType.SHORT_TEXT,
    'short': AttributeDataType.SHORT_TEXT,
    'text': AttributeDataType.SHORT_TEXT,
    'string': AttributeDataType.SHORT_TEXT,

    'long text': AttributeDataType.LONG_TEXT,
    'longtext': AttributeDataType.LONG_TEXT,
    'long': AttributeDataType.LONG_TEXT,
    'paragraph': AttributeDataType.LONG_TEXT,
    'textarea': AttributeDataType.LONG_TEXT,
    'multiline': AttributeDataType.LONG_TEXT,

    'number': AttributeDataType.INTEGER,
    'integer': AttributeDataType.INTEGER,
    'int': AttributeDataType.INTEGER,

    'decimal': AttributeDataType.DECIMAL,
    'float': AttributeDataType.DECIMAL,
    'double': AttributeDataType.DECIMAL,
    'price': AttributeDataType.DECIMAL,

    'date': AttributeDataType.DATE,
    'datetime': AttributeDataType.DATE,
    'timestamp': AttributeDataType.DATE,

    'boolean': AttributeDataType.BOOLEAN,
    'bool': AttributeDataType.BOOLEAN,
    'checkbox': AttributeDataType.BOOLEAN,
    'yes/no': AttributeDataType.BOOLEAN,
}


class ValueConversionError(ValueError):
    """A cell value does not fit the column's data type."""

    def __init__(self, value: Any, data_type: str):
        self.value = value
        self.data_type = data_type
        super().__init__(f"Invalid value for type {data_type}")


class CellKind(str, Enum):
    EMPTY = 'empty'
    TEXT = 'text'
    NUMBER = 'number'
    BOOLEAN = 'boolean'
    DATE = 'date'


@dataclass(frozen=True)
class CellValue:
    """A spreadsheet cell as read from CSV or XLSX, tagged with its kind."""
    kind: CellKind
    value: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> 'CellValue':
        if raw is None:
            return EMPTY_CELL
        # bool is a subclass of int, check it first
        if isinstance(raw, bool):
            return cls(CellKind.BOOLEAN, raw)
        if isinstance(raw, (int, float, Decimal)):
            return cls(CellKind.NUMBER, raw)
        if isinstance(raw, (datetime, date)):
            return cls(CellKind.DATE, raw)
        text = str(raw).strip()
        if not text:
            return EMPTY_CELL
        return cls(CellKind.TEXT, text)

    @property
    def is_empty(self) -> bool:
        return self.kind == CellKind.EMPTY

    def as_text(self) -> str:
        """Canonical string form used for inference and validation."""
        if self.kind == CellKind.EMPTY:
            return ''
        if self.kind == CellKind.BOOLEAN:
            return 'true' if self.value else 'false'
        if self.kind == CellKind.DATE:
            if isinstance(self.value, datetime):
                return self.value.date().isoformat()
            return self.value.isoformat()
        if self.kind == CellKind.NUMBER:
            if isinstance(self.value, float) and self.value.is_integer() and abs(self.value) < 1e15:
                # XLSX numeric cells come back as floats for whole numbers in some writers
                return str(int(self.value))
            return str(self.value)
        return str(self.value)


EMPTY_CELL = CellValue(CellKind.EMPTY)


def _string_form(value: Any) -> str:
    if isinstance(value, CellValue):
        return value.as_text()
    return CellValue.from_raw(value).as_text()


def infer_type_from_value(value: Any) -> str:
    """
    Infer an attribute data type from a single value.

    Rules are applied in order against the trimmed string form:
    empty -> short text, boolean literal, integer, decimal, date
    (YYYY-MM-DD, MM/DD/YYYY, M/D/YYYY), longer than 255 chars -> long text,
    anything else -> short text.
    """
    text = _string_form(value).strip()
    if not text:
        return AttributeDataType.SHORT_TEXT
    if text.lower() in BOOLEAN_LITERALS:
        return AttributeDataType.BOOLEAN
    if INTEGER_PATTERN.match(text):
        return AttributeDataType.INTEGER
    if DECIMAL_PATTERN.match(text):
        return AttributeDataType.DECIMAL
    if ISO_DATE_PATTERN.match(text) or US_DATE_PATTERN.match(text):
        return AttributeDataType.DATE
    if len(text) > SHORT_TEXT_MAX_LENGTH:
        return AttributeDataType.LONG_TEXT
    return AttributeDataType.SHORT_TEXT


def clean_attribute_name(name: str) -> str:
    """Normalise separators so "screen_size", "screen-size" and "Screen  size" read the same."""
    normalised = re.sub(r'[_\-]+', ' ', name or '')
    return re.sub(r'\s+', ' ', normalised).strip()


def extract_type_from_header(header: str) -> Tuple[str, Optional[str]]:
    """
    Split a header such as "Voltage [Decimal]" into ("Voltage", "decimal").
    Unknown annotations are stripped from the name and return no explicit type.
    """
    header = (header or '').strip()
    match = HEADER_TYPE_PATTERN.match(header)
    if not match:
        return clean_attribute_name(header), None
    clean_name = clean_attribute_name(match.group(1))
    explicit_type = HEADER_TYPE_ALIASES.get(match.group(2).lower().strip())
    return clean_name, explicit_type


def _parse_date(text: str) -> Optional[date]:
    if ISO_DATE_PATTERN.match(text):
        return datetime.strptime(text, '%Y-%m-%d').date()
    if US_DATE_PATTERN.match(text):
        return datetime.strptime(text, '%m/%d/%Y').date()
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def _excel_serial_to_date(serial) -> Optional[date]:
    if EXCEL_SERIAL_MIN <= serial <= EXCEL_SERIAL_MAX:
        return EXCEL_EPOCH + timedelta(days=int(serial))
    return None


def convert_value(cell: Any, data_type: str) -> str:
    """
    Convert a non-empty cell into the canonical string stored on a ProductAttribute.
    Raises ValueConversionError when the value cannot represent data_type.
    """
    if not isinstance(cell, CellValue):
        cell = CellValue.from_raw(cell)
    text = cell.as_text().strip()

    if data_type == AttributeDataType.BOOLEAN:
        lowered = text.lower()
        if lowered in TRUE_LITERALS:
            return 'true'
        if lowered in FALSE_LITERALS:
            return 'false'
        raise ValueConversionError(cell.value, data_type)

    if data_type == AttributeDataType.INTEGER:
        if INTEGER_PATTERN.match(text):
            return str(int(text))
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValueConversionError(cell.value, data_type)
        if not number.is_finite() or number != number.to_integral_value():
            raise ValueConversionError(cell.value, data_type)
        return str(int(number))

    if data_type == AttributeDataType.DECIMAL:
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValueConversionError(cell.value, data_type)
        if not number.is_finite():
            raise ValueConversionError(cell.value, data_type)
        return str(number)

    if data_type == AttributeDataType.DATE:
        if cell.kind == CellKind.DATE:
            return text
        if cell.kind == CellKind.NUMBER or INTEGER_PATTERN.match(text) or DECIMAL_PATTERN.match(text):
            try:
                parsed = _excel_serial_to_date(float(text))
            except ValueError:
                parsed = None
        else:
            try:
                parsed = _parse_date(text)
            except ValueError:
                # matched the pattern but not a real calendar day (e.g. 2024-02-31)
                parsed = None
        if parsed is None:
            raise ValueConversionError(cell.value, data_type)
        return parsed.isoformat()

    return text
