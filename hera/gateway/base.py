from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class GatewayAction(str, Enum):
    CREATE = 'CREATE'
    READ = 'READ'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'
    QUERY = 'QUERY'
    VOID = 'VOID'
    REVERSE = 'REVERSE'


@dataclass
class GatewayRequest:
    """One call of the remote transaction CRUD function."""

    action: GatewayAction
    actor_user_id: str
    organization_id: str
    transaction: Optional[Dict[str, Any]] = None
    lines: List[Dict[str, Any]] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    def as_rpc_params(self) -> Dict[str, Any]:
        """The named parameters of the remote function."""
        return {
            'p_action': GatewayAction(self.action).value,
            'p_actor_user_id': self.actor_user_id,
            'p_organization_id': self.organization_id,
            'p_transaction': self.transaction,
            'p_lines': self.lines,
            'p_options': self.options,
        }


@dataclass
class GatewayResponse:
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "GatewayResponse":
        if not isinstance(payload, dict):
            return cls(success=False, error=f"Unexpected gateway response: {payload!r}")
        return cls(
            success=bool(payload.get('success')),
            data=payload.get('data'),
            error=payload.get('error'),
        )


class TransactionGateway(ABC):
    """Abstract base class for the system of record behind the transaction service."""

    @abstractmethod
    async def execute(self, request: GatewayRequest) -> GatewayResponse:
        """
        Run one CRUD action against the transactions table.

        Gateway-level failures come back as `success=False`; exceptions are
        reserved for transport problems.
        """
        pass
