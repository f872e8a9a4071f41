"""
Transaction and TransactionLine models
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .smart_code import validate_smart_code
from .universal_model import UniversalModel, default_datetime


def normalize_transaction_type(transaction_type: Optional[str]) -> Optional[str]:
    """Transaction types are stored upper case."""
    if not transaction_type:
        return transaction_type
    return transaction_type.upper()


@dataclass(kw_only=True)
class TransactionLine(UniversalModel):
    """One line of a transaction."""

    transaction_id: Optional[str] = None
    line_number: int = 1
    line_type: Optional[str] = None
    entity_id: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_amount: Optional[float] = None
    line_amount: Optional[float] = None
    discount_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    smart_code: Optional[str] = None
    line_data: Dict[str, Any] = field(default_factory=dict)

    # Lines inherit their tenant from the parent transaction
    requires_organization = False

    def validate_line_number(self):
        if not isinstance(self.line_number, int) or self.line_number < 1:
            return f"Line number must be a positive integer, got {self.line_number!r}"
        return None

    def validate_smart_code(self):
        if self.smart_code is None:
            return None
        return validate_smart_code(self.smart_code)


@dataclass(kw_only=True)
class Transaction(UniversalModel):
    """A business event with an optional set of lines."""

    transaction_type: Optional[str] = None
    transaction_code: Optional[str] = None
    transaction_date: datetime = field(default_factory=default_datetime)
    source_entity_id: Optional[str] = None
    target_entity_id: Optional[str] = None
    total_amount: float = 0.0
    transaction_status: str = 'ACTIVE'
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    fiscal_year: Optional[int] = None
    fiscal_period: Optional[int] = None
    approval_status: Optional[str] = None
    smart_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    business_context: Dict[str, Any] = field(default_factory=dict)
    lines: List[TransactionLine] = field(default_factory=list)

    def __post_init__(self):
        self.transaction_type = normalize_transaction_type(self.transaction_type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        data = dict(data)
        lines = data.pop('lines', None) or []
        instance = super().from_dict(data)
        instance.lines = [
            line if isinstance(line, TransactionLine) else TransactionLine.from_dict(line)
            for line in lines
        ]
        return instance

    def lines_total(self) -> float:
        """Sum of line amounts; the core never forces total_amount to match it."""
        return sum(line.line_amount or 0 for line in self.lines)

    def validate_transaction_type(self):
        if not self.transaction_type:
            return "Transaction type is required"
        return None

    def validate_smart_code(self):
        return validate_smart_code(self.smart_code)

    def validate_fiscal_period(self):
        if self.fiscal_period is not None and not 1 <= self.fiscal_period <= 13:
            return f"Fiscal period must be between 1 and 13, got {self.fiscal_period}"
        return None

    def validate_lines(self):
        errors = []
        seen = set()
        for line in self.lines:
            error = line.validate_line_number()
            if error:
                errors.append(error)
            elif line.line_number in seen:
                errors.append(f"Duplicate line number {line.line_number}")
            seen.add(line.line_number)
        return "; ".join(errors) if errors else None
