"""
User column mapping: product field name -> spreadsheet column header.
"""
import json
import logging
from typing import Dict, List, Optional, Union

from apps.core.exceptions import ImportSchemaError
from apps.ingestions.schema_parser import HeaderSchema, ParsedHeader, TabularRow
from apps.ingestions.type_inference import EMPTY_CELL, CellValue

logger = logging.getLogger(__name__)

STANDARD_FIELDS = (
    'sku',
    'name',
    'productLink',
    'imageUrl',
    'subImages',
    'category',
    'family',
    'parentSku',
)
REQUIRED_FIELDS = ('sku', 'name')


def parse_mapping(raw: Union[str, bytes, Dict, None]) -> Dict[str, str]:
    """Accept the mapping as a JSON string or an already decoded dict."""
    if raw is None or raw == '' or raw == b'':
        raise ImportSchemaError("Column mapping is required")
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise ImportSchemaError(f"Invalid mapping JSON: {e}")
    if not isinstance(raw, dict):
        raise ImportSchemaError("Column mapping must be a JSON object")

    mapping = {}
    for field_name, column in raw.items():
        if column is None or (isinstance(column, str) and not column.strip()):
            continue
        if not isinstance(column, str):
            raise ImportSchemaError(f'Mapping for "{field_name}" must be a column header string')
        mapping[str(field_name).strip()] = column.strip()
    return mapping


class ColumnMapping:
    """A parsed mapping bound to the header schema of one file."""

    def __init__(self, mapping: Dict[str, str], schema: HeaderSchema):
        self.mapping = mapping
        self.schema = schema
        self._headers: Dict[str, Optional[ParsedHeader]] = {
            field_name: schema.find(column) for field_name, column in mapping.items()
        }

    def validate(self) -> None:
        for field_name in REQUIRED_FIELDS:
            if field_name not in self.mapping:
                raise ImportSchemaError(f'Field "{field_name}" must be mapped to a column')
            if self._headers.get(field_name) is None:
                raise ImportSchemaError(
                    f'Column "{self.mapping[field_name]}" mapped to "{field_name}" was not found in the file'
                )
        for field_name, header in self._headers.items():
            if header is None:
                logger.warning(f'Mapped column "{self.mapping[field_name]}" for "{field_name}" not found in file')

    def header_for(self, field_name: str) -> Optional[ParsedHeader]:
        return self._headers.get(field_name)

    def is_mapped(self, field_name: str) -> bool:
        return self._headers.get(field_name) is not None

    def cell(self, row: TabularRow, field_name: str) -> CellValue:
        header = self._headers.get(field_name)
        if header is None:
            return EMPTY_CELL
        return row.get(header.column_header)

    def text(self, row: TabularRow, field_name: str) -> str:
        return self.cell(row, field_name).as_text().strip()

    def attribute_fields(self) -> List[str]:
        """Mapped fields that are not standard product fields, in mapping order."""
        return [
            field_name for field_name in self.mapping
            if field_name not in STANDARD_FIELDS and self._headers.get(field_name) is not None
        ]
