import logging
from uuid import uuid4, UUID
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from dateutil.parser import isoparse
from typing import Any, Dict, List, NewType, Optional, Union, get_type_hints, get_origin, get_args
from enum import Enum

logger = logging.getLogger(__name__)

OrganizationId = NewType('OrganizationId', str)
EntityId = NewType('EntityId', str)
TransactionId = NewType('TransactionId', str)
UserId = NewType('UserId', str)

# Audit columns shared by every universal table
AUDIT_FIELDS = {'id', 'organization_id', 'created_at', 'updated_at',
                'created_by', 'updated_by', 'version'}


def default_datetime():
    """
    Definition for default datetime
    """
    return datetime.now(timezone.utc)


def get_uuid_str(_int=None):
    """
    Returns UUID as a canonical string. If _int is passed, it creates UUID with int base.
    """
    return str(uuid4()) if _int is None else str(UUID(int=_int, version=4))


class ModelValidationError(Exception):
    """
    Exception raised when one or more validation errors occur in the model.

    Attributes:
        errors (list): A list of error messages returned from validation methods.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        elif not isinstance(errors, list):
            raise ValueError("Errors should be a string or a list of strings")
        self.errors = errors
        super().__init__(self.format_errors())

    def format_errors(self):
        return "\n".join(self.errors)

    def __str__(self):
        return self.format_errors()


@dataclass(kw_only=True)
class UniversalModel:
    """A base class for the six universal tables with their common audit attributes."""

    id: str = field(default_factory=get_uuid_str)
    organization_id: Optional[str] = None
    created_at: datetime = field(default_factory=default_datetime)
    updated_at: datetime = field(default_factory=default_datetime)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    version: int = 1

    # Subclasses set this to False when the record is its own tenant (Organization)
    requires_organization = True

    @classmethod
    def fields(cls) -> List[str]:
        """
        Get a list of field names for this model.

        Returns:
            List[str]: A list of field names.
        """
        return [f.name for f in fields(cls)]

    def _convert_value_for_dict(self, v, convert_datetime_to_iso_string: bool):
        """Convert a value for dictionary output."""
        if convert_datetime_to_iso_string and isinstance(v, (datetime, date)):
            return v.isoformat()
        if isinstance(v, UUID):
            return str(v)
        if isinstance(v, Enum):
            return v.value
        if isinstance(v, UniversalModel):
            return v.as_dict(convert_datetime_to_iso_string)
        if isinstance(v, list):
            return [self._convert_value_for_dict(i, convert_datetime_to_iso_string) for i in v]
        return v

    def as_dict(self, convert_datetime_to_iso_string: bool = False) -> Dict[str, Any]:
        """
        Convert this model to a dictionary.

        Args:
            convert_datetime_to_iso_string (bool, optional): Whether to convert datetime to ISO strings.

        Returns:
            Dict[str, Any]: A dictionary representation of this model.
        """
        return {
            name: self._convert_value_for_dict(getattr(self, name), convert_datetime_to_iso_string)
            for name in self.fields()
        }

    @classmethod
    def _try_convert_enum(cls, v: str, enum_type) -> Any:
        """Try to convert a string to an enum value."""
        try:
            return enum_type(v)
        except ValueError:
            return v

    @classmethod
    def _try_convert_datetime(cls, v: str) -> Any:
        """Try to convert a string to a datetime value."""
        try:
            return isoparse(v)
        except (ValueError, TypeError):
            logger.info("'%s' is not a valid ISO datetime.", v)
            return v

    @classmethod
    def _convert_from_string(cls, v, expected_type) -> Any:
        """Convert string values to enum or datetime types."""
        if not isinstance(v, str):
            return v

        if get_origin(expected_type) is Union:
            for arg in get_args(expected_type):
                if arg is type(None):
                    continue
                converted = cls._convert_from_string(v, arg)
                if converted is not v:
                    return converted
            return v

        if isinstance(expected_type, type) and issubclass(expected_type, Enum):
            return cls._try_convert_enum(v, expected_type)

        if expected_type is datetime:
            return cls._try_convert_datetime(v)

        return v

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UniversalModel":
        """
        Load a model from a dict, ignoring keys that are not model fields.
        """
        clean_data = {k: v for k, v in data.items() if k in cls.fields()}
        hints = get_type_hints(cls)

        for k, v in clean_data.items():
            if v is None:
                continue
            expected_type = hints.get(k)
            if expected_type:
                clean_data[k] = cls._convert_from_string(v, expected_type)

        return cls(**clean_data)

    def validate_organization_id(self):
        if self.requires_organization and not self.organization_id:
            return f"'{type(self).__name__}' must belong to an organization"
        return None

    def validate(self):
        """
        Validate all fields by calling corresponding `validate_<field_name>` methods if defined.
        Raise `ModelValidationError` if any validations fail.
        """
        errors = []
        for name in self.fields():
            validator = getattr(self, f"validate_{name}", None)
            if callable(validator):
                error = validator()
                if error:
                    errors.append(error)

        if errors:
            raise ModelValidationError(errors)

    def prepare_for_save(self, changed_by_id: Optional[str]):
        """
        Stamp the audit columns before handing the record to a gateway.

        Args:
            changed_by_id (str): The ID of the user making the change.
        """
        if not self.id:
            self.id = get_uuid_str()
        now = datetime.now(timezone.utc)
        if changed_by_id:
            if not self.created_by:
                self.created_by = changed_by_id
            self.updated_by = changed_by_id
        self.updated_at = now
        self.validate()
