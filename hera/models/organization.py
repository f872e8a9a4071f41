"""
Organization model
"""

from dataclasses import dataclass
from typing import Optional

from .universal_model import UniversalModel


@dataclass(kw_only=True)
class Organization(UniversalModel):
    """An organization model, the tenancy boundary every other record belongs to."""

    organization_name: Optional[str] = None
    organization_code: Optional[str] = None
    organization_type: Optional[str] = None
    industry_classification: Optional[str] = None
    # Organizations form a tree through their parent
    parent_organization_id: Optional[str] = None
    status: str = 'active'

    requires_organization = False

    def validate_organization_name(self):
        if not self.organization_name:
            return "Organization name is required"
        return None

    def validate_parent_organization_id(self):
        if self.parent_organization_id and self.parent_organization_id == self.id:
            return "Organization cannot be its own parent"
        return None
