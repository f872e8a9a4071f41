"""
Entity model
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .universal_model import UniversalModel
from .smart_code import validate_smart_code


@dataclass(kw_only=True)
class Entity(UniversalModel):
    """A generic business object, discriminated by `entity_type`."""

    entity_type: Optional[str] = None
    entity_name: Optional[str] = None
    entity_code: Optional[str] = None
    entity_description: Optional[str] = None
    parent_entity_id: Optional[str] = None
    smart_code: Optional[str] = None
    status: str = 'active'
    metadata: Dict[str, Any] = field(default_factory=dict)

    def validate_entity_type(self):
        if not self.entity_type:
            return "Entity type is required"
        return None

    def validate_entity_name(self):
        if not self.entity_name:
            return "Entity name is required"
        return None

    def validate_smart_code(self):
        return validate_smart_code(self.smart_code)
