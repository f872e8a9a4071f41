"""
Smart code classification strings: HERA.<DOMAIN>.<MODULE>.<TYPE>.<SUBTYPE>[.<MORE>].v<N>
"""
import re
from typing import Optional

SMART_CODE_PATTERN = re.compile(r'^HERA(?:\.[A-Z0-9_]{2,30}){4,8}\.v[0-9]+$')


def is_valid_smart_code(code: Optional[str]) -> bool:
    """Returns True if `code` is a well-formed smart code."""
    if not isinstance(code, str):
        return False
    return SMART_CODE_PATTERN.match(code) is not None


def validate_smart_code(code: Optional[str], field_name: str = 'smart_code') -> Optional[str]:
    """
    Returns an error message for a malformed smart code, None otherwise.
    Meant to be called from a model's `validate_<field>` method.
    """
    if is_valid_smart_code(code):
        return None
    return f"Invalid {field_name} '{code}': expected HERA.<DOMAIN>.<MODULE>.<TYPE>.<SUBTYPE>.v<N>"
