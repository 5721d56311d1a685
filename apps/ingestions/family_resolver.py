"""
Family attribute resolution for one import run.

Requiredness is a per-run heuristic and is not read from or written to the
database: for each family named in the file, the first row (lowest row number)
carrying that family is its reference row, and a mapped family attribute is
treated as required when the reference row has a value for it. Reordering the
rows can therefore change the result.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from apps.ingestions.lookup_cache import CatalogLookup
from apps.ingestions.mapping import ColumnMapping
from apps.ingestions.schema_parser import TabularRow
from apps.ingestions.type_inference import clean_attribute_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FamilyAttributeSpec:
    attribute_id: int
    attribute_name: str
    family_attribute_id: int
    field_name: str
    column_header: str
    data_type: str
    is_required: bool
    reference_row: int


@dataclass
class FamilyAttributeDefinition:
    family_id: int
    family_name: str
    attributes: List[FamilyAttributeSpec] = field(default_factory=list)

    def attribute_for_field(self, field_name: str) -> Optional[FamilyAttributeSpec]:
        for member in self.attributes:
            if member.field_name == field_name:
                return member
        return None

    def to_dict(self) -> Dict:
        return {
            'family_id': self.family_id,
            'family_name': self.family_name,
            'attributes': [
                {
                    'attribute_id': member.attribute_id,
                    'attribute_name': member.attribute_name,
                    'family_attribute_id': member.family_attribute_id,
                    'data_type': member.data_type,
                    'is_required': member.is_required,
                    'reference_row': member.reference_row,
                }
                for member in self.attributes
            ],
        }


def family_key(name: Optional[str]) -> str:
    """Family names match case-insensitively, as the catalog lookup does."""
    return (name or '').strip().lower()


def select_reference_rows(rows: Iterable[TabularRow], family_values: Dict[int, str]) -> Dict[str, TabularRow]:
    """
    Pick the reference row for every family: the row with the lowest row number.
    family_values maps row_number -> family name as written in that row; the
    result is keyed by family_key() so "Shoes" and "shoes" share one reference row.
    """
    reference = {}
    for row in sorted(rows, key=lambda r: r.row_number):
        key = family_key(family_values.get(row.row_number))
        if not key or key in reference:
            continue
        reference[key] = row
    return reference


class FamilyAttributeResolver:
    """Builds FamilyAttributeDefinition objects for every family referenced in a file."""

    def __init__(self, lookup: CatalogLookup):
        self.lookup = lookup
        self.warnings: List[str] = []

    def resolve(self, rows: List[TabularRow], mapping: ColumnMapping) -> Dict[str, FamilyAttributeDefinition]:
        """Definitions keyed by family_key() of each family named in the file."""
        if not mapping.is_mapped('family'):
            return {}

        family_values = {row.row_number: mapping.text(row, 'family') for row in rows}
        reference_rows = select_reference_rows(rows, family_values)
        attribute_fields = mapping.attribute_fields()

        definitions = {}
        for key, reference_row in reference_rows.items():
            family_name = family_values[reference_row.row_number].strip()
            family = self.lookup.find_family(family_name)
            if family is None:
                message = f'Family "{family_name}" not found (first seen on row {reference_row.row_number})'
                logger.warning(message)
                self.warnings.append(message)
                continue

            definition = FamilyAttributeDefinition(family_id=family.pk, family_name=family.name)
            members = {
                clean_attribute_name(fa.attribute.name).lower(): fa
                for fa in family.family_attributes.all()
            }
            for field_name in attribute_fields:
                family_attribute = members.get(clean_attribute_name(field_name).lower())
                if family_attribute is None:
                    continue
                header = mapping.header_for(field_name)
                data_type = header.data_type if header.type_source == 'explicit' else family_attribute.attribute.data_type
                definition.attributes.append(FamilyAttributeSpec(
                    attribute_id=family_attribute.attribute_id,
                    attribute_name=family_attribute.attribute.name,
                    family_attribute_id=family_attribute.pk,
                    field_name=field_name,
                    column_header=header.column_header,
                    data_type=str(data_type),
                    is_required=not reference_row.get(header.column_header).is_empty,
                    reference_row=reference_row.row_number,
                ))

            definitions[key] = definition
            logger.info(
                f"Family '{family.name}': {len(definition.attributes)} mapped attributes, "
                f"{sum(1 for a in definition.attributes if a.is_required)} required "
                f"(reference row {reference_row.row_number})"
            )

        return definitions
