"""
Per-row validation and transformation of imported spreadsheet rows.

A row either becomes a ProductRecord ready for persistence or yields a list
of field errors. Errors never stop the other rows.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import URLValidator

from apps.ingestions.family_resolver import FamilyAttributeDefinition, family_key
from apps.ingestions.lookup_cache import CatalogLookup
from apps.ingestions.mapping import ColumnMapping
from apps.ingestions.schema_parser import TabularRow
from apps.ingestions.type_inference import ValueConversionError, convert_value
from apps.products.services import AttributeValueInput, ProductRecord

logger = logging.getLogger(__name__)

SKU_MIN_LENGTH = 4
SKU_MAX_LENGTH = 40
NAME_MAX_LENGTH = 100

_url_validator = URLValidator(schemes=['http', 'https'])


@dataclass
class ValidationError:
    row: int
    field: str
    message: str
    value: Any = None

    def to_dict(self) -> Dict:
        return {'row': self.row, 'field': self.field, 'message': self.message, 'value': self.value}


@dataclass
class RowResult:
    row_number: int
    record: Optional[ProductRecord] = None
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.record is not None

    def error_message(self) -> str:
        return '; '.join(f"{e.field}: {e.message}" for e in self.errors)


def is_valid_url(value: str) -> bool:
    try:
        _url_validator(value)
        return True
    except DjangoValidationError:
        return False


def parse_sub_images(value: str) -> List[str]:
    """Accept a JSON array, a comma separated list, or a single URL."""
    value = (value or '').strip()
    if not value:
        return []
    if value.startswith('['):
        try:
            parsed = json.loads(value)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
    if ',' in value:
        return [part.strip() for part in value.split(',') if part.strip()]
    return [value]


class RowValidator:
    """Validates rows against the mapping and the family definitions of one import run."""

    def __init__(self, mapping: ColumnMapping, definitions: Dict[str, FamilyAttributeDefinition],
                 lookup: CatalogLookup):
        self.mapping = mapping
        self.definitions = definitions
        self.lookup = lookup
        self.warnings: List[str] = []
        self._warned: Set[str] = set()

    def _warn(self, key: str, message: str) -> None:
        if key in self._warned:
            return
        self._warned.add(key)
        logger.warning(message)
        self.warnings.append(message)

    def validate(self, row: TabularRow) -> RowResult:
        result = RowResult(row_number=row.row_number)
        errors = result.errors
        n = row.row_number

        sku = self.mapping.text(row, 'sku')
        if not sku:
            errors.append(ValidationError(n, 'sku', 'SKU is required', sku))
        elif not SKU_MIN_LENGTH <= len(sku) <= SKU_MAX_LENGTH:
            errors.append(ValidationError(n, 'sku', 'SKU must be between 4 and 40 characters', sku))

        name = self.mapping.text(row, 'name')
        if not name or len(name) > NAME_MAX_LENGTH:
            errors.append(ValidationError(n, 'name', 'Name must be between 1 and 100 characters', name))

        product_link = self.mapping.text(row, 'productLink') or None
        if product_link and not is_valid_url(product_link):
            errors.append(ValidationError(n, 'productLink', 'Product link must be a valid URL', product_link))

        image_url = self.mapping.text(row, 'imageUrl') or None
        if image_url and not is_valid_url(image_url):
            errors.append(ValidationError(n, 'imageUrl', 'Image URL must be a valid URL', image_url))

        sub_images = parse_sub_images(self.mapping.text(row, 'subImages'))
        bad_images = [url for url in sub_images if not is_valid_url(url)]
        if bad_images:
            errors.append(ValidationError(n, 'subImages', 'Sub images must be valid URLs', bad_images))

        family_id = None
        definition = None
        family_name = self.mapping.text(row, 'family')
        if family_name:
            definition = self.definitions.get(family_key(family_name))
            if definition is not None:
                family_id = definition.family_id
            else:
                family = self.lookup.find_family(family_name)
                if family is not None:
                    family_id = family.pk
                else:
                    self._warn(f"family:{family_name.lower()}",
                               f'Family "{family_name}" not found; rows import without a family')

        category_id = None
        category_name = self.mapping.text(row, 'category')
        if category_name:
            category = self.lookup.find_category(category_name)
            if category is not None:
                category_id = category.pk
            else:
                self._warn(f"category:{category_name.lower()}",
                           f'Category "{category_name}" not found; rows import without a category')

        family_values = []
        consumed = set()
        if definition is not None:
            for member in definition.attributes:
                consumed.add(member.field_name)
                cell = row.get(member.column_header)
                if cell.is_empty:
                    continue
                try:
                    value = convert_value(cell, member.data_type)
                except ValueConversionError as e:
                    errors.append(ValidationError(n, member.field_name, str(e), cell.as_text()))
                    continue
                family_values.append(AttributeValueInput(
                    attribute_id=member.attribute_id,
                    value=value,
                    family_attribute_id=member.family_attribute_id,
                ))

        custom_values = []
        for field_name in self.mapping.attribute_fields():
            if field_name in consumed:
                continue
            header = self.mapping.header_for(field_name)
            attribute, _ = self.lookup.get_or_create_attribute(header.clean_name, header.data_type)
            cell = row.get(header.column_header)
            if cell.is_empty:
                continue
            try:
                value = convert_value(cell, attribute.data_type)
            except ValueConversionError as e:
                errors.append(ValidationError(n, field_name, str(e), cell.as_text()))
                continue
            custom_values.append(AttributeValueInput(attribute_id=attribute.pk, value=value))

        parent_sku = self.mapping.text(row, 'parentSku') or None
        if parent_sku:
            if not SKU_MIN_LENGTH <= len(parent_sku) <= SKU_MAX_LENGTH:
                errors.append(ValidationError(n, 'parentSku', 'Parent SKU must be between 4 and 40 characters', parent_sku))
            elif parent_sku == sku:
                errors.append(ValidationError(n, 'parentSku', 'Product cannot be its own parent', parent_sku))

        if errors:
            return result

        result.record = ProductRecord(
            row_number=n,
            sku=sku,
            name=name,
            product_link=product_link,
            image_url=image_url,
            sub_images=sub_images,
            category_id=category_id,
            family_id=family_id,
            parent_sku=parent_sku,
            family_values=family_values,
            custom_values=custom_values,
        )
        return result
