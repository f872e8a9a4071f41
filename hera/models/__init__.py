"""
Models for hera
"""

from .universal_model import (
    UniversalModel, ModelValidationError,
    OrganizationId, EntityId, TransactionId, UserId,
)
from .smart_code import is_valid_smart_code, validate_smart_code
from .organization import Organization
from .entity import Entity
from .dynamic_data import DynamicData, DynamicValue, FieldType
from .relationship import Relationship, RelationshipDirection
from .transaction import Transaction, TransactionLine, normalize_transaction_type
from .response import ServiceResponse, ResponseMetadata, build_metadata
