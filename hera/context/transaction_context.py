"""
Binds a TransactionService to the ambient organization/user so callers do
not pass them on every call.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from hera.context.auth_context import AuthContext, get_auth_context
from hera.errors import AuthenticationRequired, BatchLimitExceeded, TransactionServiceError
from hera.models import ServiceResponse, build_metadata
from hera.services.transaction_service import (
    AUTH_REQUIRED_MESSAGE, BatchResult, TransactionPayload, TransactionService,
)

logger = logging.getLogger(__name__)


class TransactionContext:
    """
    Service wrapper that fills in organization and actor from an AuthContext.
    Without a fixed `auth`, the ambient context is read on every call.
    Unauthenticated calls fail before any gateway I/O.
    """

    def __init__(self, service: TransactionService, auth: Optional[AuthContext] = None):
        self.service = service
        self._auth = auth

    @property
    def auth(self) -> AuthContext:
        return self._auth if self._auth is not None else get_auth_context()

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    def _scope(self) -> Optional[Dict[str, str]]:
        auth = self.auth
        if not auth.is_authenticated:
            return None
        return {'organization_id': auth.organization_id, 'actor_user_id': auth.actor_user_id}

    def _unauthenticated(self, operation: str) -> ServiceResponse:
        auth = self.auth
        logger.warning("%s called without organization or user context", operation)
        return ServiceResponse.fail(
            AUTH_REQUIRED_MESSAGE,
            build_metadata(operation, auth.organization_id, auth.actor_user_id))

    async def create_transaction(self, request: TransactionPayload,
                                 idempotency_key: Optional[str] = None) -> ServiceResponse:
        scope = self._scope()
        if scope is None:
            return self._unauthenticated('CREATE')
        return await self.service.create_transaction(request, idempotency_key=idempotency_key, **scope)

    async def query_transactions(self, query: Optional[Dict[str, Any]] = None,
                                 use_cache: bool = True) -> ServiceResponse:
        scope = self._scope()
        if scope is None:
            return self._unauthenticated('QUERY')
        return await self.service.query_transactions(query, use_cache=use_cache, **scope)

    async def get_transaction(self, transaction_id: str, include_lines: Optional[bool] = None,
                              use_cache: bool = True) -> ServiceResponse:
        scope = self._scope()
        if scope is None:
            return self._unauthenticated('READ')
        return await self.service.get_transaction(
            transaction_id, include_lines=include_lines, use_cache=use_cache, **scope)

    async def update_transaction(self, request: TransactionPayload) -> ServiceResponse:
        scope = self._scope()
        if scope is None:
            return self._unauthenticated('UPDATE')
        return await self.service.update_transaction(request, **scope)

    async def delete_transaction(self, transaction_id: str, reason: Optional[str] = None) -> ServiceResponse:
        scope = self._scope()
        if scope is None:
            return self._unauthenticated('DELETE')
        return await self.service.delete_transaction(transaction_id, reason=reason, **scope)

    async def batch_operations(self, transactions: List[Dict[str, Any]]) -> List[BatchResult]:
        scope = self._scope()
        if scope is None:
            failure = self._unauthenticated('BATCH')
            return [BatchResult(index=i, action=op.get('action'), response=failure)
                    for i, op in enumerate(transactions)]
        return await self.service.batch_operations(transactions=transactions, **scope)

    # Convenience hooks

    async def load_transactions(self, query: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Loader for throw-based data fetching.

        Raises:
            AuthenticationRequired: if organization or user is missing.
            TransactionServiceError: if the query fails.
        """
        if not self.is_authenticated:
            raise AuthenticationRequired(AUTH_REQUIRED_MESSAGE)
        response = await self.query_transactions(query)
        if not response.success:
            raise TransactionServiceError(response.error)
        return response.data

    async def create_with_callbacks(
        self,
        request: TransactionPayload,
        on_success: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        idempotency_key: Optional[str] = None
    ) -> ServiceResponse:
        response = await self.create_transaction(request, idempotency_key=idempotency_key)
        if response.success:
            if on_success:
                on_success(response.data)
        elif on_error:
            on_error(response.error)
        return response

    async def execute_batch(
        self,
        transactions: List[Dict[str, Any]],
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_success: Optional[Callable[[List[BatchResult]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None
    ) -> List[BatchResult]:
        """
        Run a batch and report through callbacks. `on_progress(completed, total)`
        fires at the start and once the batch settles; `on_success` receives all
        results when every item succeeded, `on_error` a summary otherwise.
        Oversized batches are reported through `on_error` and return no results.
        """
        total = len(transactions)
        if on_progress:
            on_progress(0, total)
        try:
            results = await self.batch_operations(transactions)
        except BatchLimitExceeded as e:
            logger.warning("Batch rejected: %s", e)
            if on_error:
                on_error(str(e))
            return []

        if on_progress:
            on_progress(total, total)
        failed = [r for r in results if not r.success]
        if failed:
            if on_error:
                on_error(f"{len(failed)} of {total} operations failed: "
                         + "; ".join(f"#{r.index} {r.action}: {r.error}" for r in failed))
        elif on_success:
            on_success(results)
        return results
