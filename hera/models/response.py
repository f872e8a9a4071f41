"""
Uniform response envelope returned by every service operation.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class ResponseMetadata:
    actor_user_id: Optional[str]
    organization_id: Optional[str]
    operation: str
    timestamp: str
    duration_ms: Optional[float] = None


@dataclass
class ServiceResponse(Generic[T]):
    """
    `success=False` is the normal failure channel; `error` carries the
    message to show as-is.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    metadata: Optional[ResponseMetadata] = None

    @classmethod
    def ok(cls, data: T, metadata: Optional[ResponseMetadata] = None) -> "ServiceResponse[T]":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, metadata: Optional[ResponseMetadata] = None) -> "ServiceResponse[T]":
        return cls(success=False, data=None, error=error, metadata=metadata)

    def as_dict(self) -> Dict[str, Any]:
        result = {'success': self.success, 'data': self.data}
        if self.error is not None:
            result['error'] = self.error
        if self.metadata is not None:
            result['metadata'] = asdict(self.metadata)
        return result


def build_metadata(operation: str, organization_id: Optional[str], actor_user_id: Optional[str],
                   duration_ms: Optional[float] = None) -> ResponseMetadata:
    return ResponseMetadata(
        actor_user_id=actor_user_id,
        organization_id=organization_id,
        operation=operation,
        timestamp=datetime.now(timezone.utc).isoformat(),
        duration_ms=duration_ms,
    )
