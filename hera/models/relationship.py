"""
Relationship model
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .entity import Entity
from .smart_code import validate_smart_code
from .universal_model import UniversalModel, ModelValidationError


class RelationshipDirection(Enum):
    forward = 'forward'
    reverse = 'reverse'
    bidirectional = 'bidirectional'


@dataclass(kw_only=True)
class Relationship(UniversalModel):
    """A directed (or bidirectional) edge between two entities of one organization."""

    from_entity_id: Optional[str] = None
    to_entity_id: Optional[str] = None
    relationship_type: Optional[str] = None
    relationship_direction: RelationshipDirection = RelationshipDirection.forward
    relationship_strength: float = 1.0
    relationship_data: Dict[str, Any] = field(default_factory=dict)
    smart_code: Optional[str] = None
    is_active: bool = True
    effective_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    def validate_from_entity_id(self):
        if not self.from_entity_id:
            return "Relationship source entity is required"
        return None

    def validate_to_entity_id(self):
        if not self.to_entity_id:
            return "Relationship target entity is required"
        return None

    def validate_relationship_type(self):
        if not self.relationship_type:
            return "Relationship type is required"
        return None

    def validate_relationship_strength(self):
        if not 0 <= self.relationship_strength <= 1:
            return f"Relationship strength must be between 0 and 1, got {self.relationship_strength}"
        return None

    def validate_smart_code(self):
        return validate_smart_code(self.smart_code)

    def validate_expiration_date(self):
        if self.effective_date and self.expiration_date and self.expiration_date < self.effective_date:
            return "Relationship expires before it becomes effective"
        return None

    def check_endpoints(self, from_entity: Entity, to_entity: Entity):
        """
        Raise ModelValidationError unless both endpoints are the referenced
        entities and live in this relationship's organization.
        """
        errors = []
        for label, entity, expected_id in (('source', from_entity, self.from_entity_id),
                                           ('target', to_entity, self.to_entity_id)):
            if entity.id != expected_id:
                errors.append(f"Relationship {label} entity mismatch: {entity.id} != {expected_id}")
            if entity.organization_id != self.organization_id:
                errors.append(
                    f"Relationship {label} entity {entity.id} belongs to organization "
                    f"{entity.organization_id}, not {self.organization_id}")
        if errors:
            raise ModelValidationError(errors)
