import csv
import io
import json
from typing import Dict, Iterable, List, Optional, Sequence

from django.utils import timezone

EXPORT_FIELDS = (
    'product_id',
    'sku',
    'name',
    'status',
    'image_url',
    'product_link',
    'sub_images',
    'category',
    'family',
    'parent_sku',
    'variant_skus',
    'attributes',
    'updated_at',
)
EXPORT_FORMATS = {
    'json': 'application/json',
    'csv': 'text/csv',
}


def select_fields(rows: Iterable[Dict], fields: Sequence[str]) -> List[Dict]:
    return [{name: row.get(name) for name in fields} for row in rows]


def _csv_cell(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def render_csv(rows: Iterable[Dict], header: Sequence[str]) -> bytes:
    """CSV with one product per row; list and dict values are JSON encoded."""
    buffer = io.StringIO(newline='')
    writer = csv.writer(buffer)
    writer.writerow(header)
    for row in rows:
        writer.writerow([_csv_cell(row.get(col)) for col in header])
    return buffer.getvalue().encode('utf-8')


def export_filename(fmt: str, filename: Optional[str] = None) -> str:
    if filename:
        return filename
    return f"products_export_{timezone.now().date().isoformat()}.{fmt}"
