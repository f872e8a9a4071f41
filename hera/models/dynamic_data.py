"""
DynamicData model

A typed key/value attribute attached to one entity. The stored row carries one
column per value type; callers work with `DynamicValue`, and the flat columns
only exist at the persistence boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .smart_code import validate_smart_code
from .universal_model import UniversalModel


class FieldType(Enum):
    text = 'text'
    number = 'number'
    boolean = 'boolean'
    date = 'date'
    json = 'json'
    file = 'file'


# field_type -> the one column that holds its value
VALUE_COLUMNS = {
    FieldType.text: 'field_value_text',
    FieldType.number: 'field_value_number',
    FieldType.boolean: 'field_value_boolean',
    FieldType.date: 'field_value_date',
    FieldType.json: 'field_value_json',
    FieldType.file: 'field_value_file_url',
}

_PYTHON_TYPES = {
    FieldType.text: (str,),
    FieldType.number: (int, float),
    FieldType.boolean: (bool,),
    FieldType.date: (datetime, str),
    FieldType.json: (dict, list),
    FieldType.file: (str,),
}


@dataclass(frozen=True)
class DynamicValue:
    """Tagged value: `type` decides how `value` is stored."""

    type: FieldType
    value: Any

    def __post_init__(self):
        if not isinstance(self.type, FieldType):
            object.__setattr__(self, 'type', FieldType(self.type))
        expected = _PYTHON_TYPES[self.type]
        # bool is an int subclass, keep it out of number fields
        if self.type is FieldType.number and isinstance(self.value, bool):
            raise TypeError("Boolean value given for a number field")
        if self.value is not None and not isinstance(self.value, expected):
            raise TypeError(
                f"Value of type {type(self.value).__name__} does not match field type {self.type.value}")


@dataclass(kw_only=True)
class DynamicData(UniversalModel):
    """A dynamic data row in its flat, multi-column persisted form."""

    entity_id: Optional[str] = None
    field_name: Optional[str] = None
    field_type: FieldType = FieldType.text
    field_value_text: Optional[str] = None
    field_value_number: Optional[float] = None
    field_value_boolean: Optional[bool] = None
    field_value_date: Optional[datetime] = None
    field_value_json: Optional[Any] = None
    field_value_file_url: Optional[str] = None
    smart_code: Optional[str] = None
    validation_rules: Dict[str, Any] = field(default_factory=dict)
    is_searchable: bool = True
    is_required: bool = False
    field_order: int = 1

    @classmethod
    def from_value(cls, entity_id: str, field_name: str, value: DynamicValue, **kwargs) -> "DynamicData":
        """Build the flat row for a tagged value."""
        columns = {VALUE_COLUMNS[value.type]: value.value}
        return cls(entity_id=entity_id, field_name=field_name, field_type=value.type, **columns, **kwargs)

    @property
    def value(self) -> DynamicValue:
        """The authoritative value, read from the column selected by `field_type`."""
        return DynamicValue(self.field_type, getattr(self, VALUE_COLUMNS[self.field_type]))

    def as_dict(self, convert_datetime_to_iso_string: bool = False) -> Dict[str, Any]:
        result = super().as_dict(convert_datetime_to_iso_string)
        authoritative = VALUE_COLUMNS[self.field_type]
        for column in VALUE_COLUMNS.values():
            if column != authoritative:
                result[column] = None
        return result

    def validate_entity_id(self):
        if not self.entity_id:
            return "Dynamic data must be attached to an entity"
        return None

    def validate_field_name(self):
        if not self.field_name:
            return "Field name is required"
        return None

    def validate_field_type(self):
        authoritative = VALUE_COLUMNS[self.field_type]
        populated = [c for c in VALUE_COLUMNS.values() if c != authoritative and getattr(self, c) is not None]
        if populated:
            return (f"Field '{self.field_name}' of type {self.field_type.value} "
                    f"has values in {', '.join(populated)}")
        return None

    def validate_smart_code(self):
        if self.smart_code is None:
            return None
        return validate_smart_code(self.smart_code)
