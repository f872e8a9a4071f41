"""
Transaction service: the single path through which transaction reads and
writes reach the gateway.
"""
import copy
import json
import time
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from hera.cache import TtlCache
from hera.config import TransactionServiceConfig
from hera.errors import BatchLimitExceeded, GatewayError
from hera.gateway import GatewayAction, GatewayRequest, GatewayResponse, TransactionGateway
from hera.models import Transaction, ServiceResponse, build_metadata, normalize_transaction_type

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "Authentication required: missing organization or user context"

PYTHON_LOG_LEVELS = {
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
}

TransactionPayload = Union[Transaction, Dict[str, Any]]


@dataclass
class BatchResult:
    """Outcome of one batch operation; `index` is its position in the request."""

    index: int
    action: str
    response: ServiceResponse

    @property
    def success(self) -> bool:
        return self.response.success

    @property
    def data(self) -> Any:
        return self.response.data

    @property
    def error(self) -> Optional[str]:
        return self.response.error

    def as_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'action': self.action, **self.response.as_dict()}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unwrap_payload(data: Any) -> Any:
    """Strip envelopes the remote function nests inside its own `data`."""
    while isinstance(data, dict) and 'success' in data and 'data' in data:
        data = data['data']
    return data


def _flatten_transaction(record: Any) -> Any:
    """Turn a `{header, lines}` record into a flat transaction dict."""
    if not isinstance(record, dict) or 'header' not in record:
        return record
    flat = dict(record.get('header') or {})
    flat['lines'] = record.get('lines') or []
    return flat


class TransactionService:
    """
    Orchestrates transaction CRUD against a gateway, with a TTL cache in front
    of reads and a uniform ServiceResponse envelope on every operation.

    Every operation takes an explicit organization and actor. Failures come back
    as `success=False`; the only exception that escapes is BatchLimitExceeded.
    """

    def __init__(
        self,
        gateway: TransactionGateway,
        cache: Optional[TtlCache] = None,
        config: Optional[TransactionServiceConfig] = None
    ):
        self.gateway = gateway
        self._config = config or TransactionServiceConfig()
        self.cache = cache if cache is not None else TtlCache(ttl_ms=self._config.default_cache_stale_time)
        self._last_error: Optional[str] = None
        self._apply_log_level()

    @property
    def config(self) -> TransactionServiceConfig:
        return self._config

    def update_config(self, **overrides: Any) -> TransactionServiceConfig:
        """Replace config values at runtime. Concurrent callers are not coordinated; last write wins."""
        self._config = self._config.updated(**overrides)
        if 'default_cache_stale_time' in overrides:
            self.cache.ttl_ms = self._config.default_cache_stale_time
        self._apply_log_level()
        logger.info("Transaction service config updated: %s", sorted(overrides))
        return self._config

    def _apply_log_level(self):
        logging.getLogger('hera').setLevel(PYTHON_LOG_LEVELS[self._config.log_level])

    # Cache keys embed the organization id so writes can evict by substring
    @staticmethod
    def _query_cache_key(organization_id: str, query: Dict[str, Any]) -> str:
        return f"{organization_id}:query:{json.dumps(query, sort_keys=True, default=str)}"

    @staticmethod
    def _read_cache_key(organization_id: str, transaction_id: str) -> str:
        return f"{organization_id}:transaction:{transaction_id}"

    def _invalidate_transaction(self, organization_id: str, transaction_id: str):
        self.cache.invalidate(transaction_id)
        self.cache.invalidate(organization_id)

    async def _send(self, request: GatewayRequest) -> GatewayResponse:
        timeout = self._config.gateway_timeout
        try:
            if timeout:
                return await asyncio.wait_for(self.gateway.execute(request), timeout)
            return await self.gateway.execute(request)
        except asyncio.TimeoutError as e:
            raise GatewayError(f"Gateway {request.action.value} timed out after {timeout}s") from e

    async def _run(
        self,
        operation: str,
        organization_id: Optional[str],
        actor_user_id: Optional[str],
        handler: Callable[[], Awaitable[ServiceResponse]]
    ) -> ServiceResponse:
        """Auth check, timing, exception containment and metadata for one operation."""
        started = time.perf_counter()

        def metadata(name: str):
            duration_ms = round((time.perf_counter() - started) * 1000, 3)
            return build_metadata(name, organization_id, actor_user_id, duration_ms)

        if not organization_id or not actor_user_id:
            logger.warning("%s rejected: missing organization or user context", operation)
            return ServiceResponse.fail(AUTH_REQUIRED_MESSAGE, metadata(operation))

        try:
            response = await handler()
        except Exception as e:
            logger.exception("%s failed for organization %s", operation, organization_id)
            self._last_error = str(e) or type(e).__name__
            return ServiceResponse.fail(self._last_error, metadata(operation))

        self._last_error = None

        name = response.metadata.operation if response.metadata else operation
        response.metadata = metadata(name)
        if response.success:
            logger.debug("%s succeeded in %.1fms", name, response.metadata.duration_ms)
        else:
            logger.warning("%s failed: %s", name, response.error)
        return response

    def _request(self, action: GatewayAction, organization_id: str, actor_user_id: str,
                 transaction: Optional[Dict[str, Any]] = None,
                 lines: Optional[List[Dict[str, Any]]] = None,
                 options: Optional[Dict[str, Any]] = None) -> GatewayRequest:
        return GatewayRequest(
            action=action,
            actor_user_id=actor_user_id,
            organization_id=organization_id,
            transaction=transaction,
            lines=lines or [],
            options={k: v for k, v in (options or {}).items() if v is not None},
        )

    @staticmethod
    def _split_payload(request: TransactionPayload, organization_id: str):
        """
        Return (header, lines) dicts for the gateway. Models are validated first;
        a payload that names another organization is rejected.
        """
        if isinstance(request, Transaction):
            if request.organization_id and request.organization_id != organization_id:
                raise ValueError(
                    f"Transaction belongs to organization {request.organization_id}, not {organization_id}")
            replace(request, organization_id=organization_id).validate()
            header = request.as_dict(convert_datetime_to_iso_string=True)
        else:
            header = copy.deepcopy(dict(request))
            owner = header.get('organization_id')
            if owner and owner != organization_id:
                raise ValueError(f"Transaction belongs to organization {owner}, not {organization_id}")
            if isinstance(header.get('transaction_date'), datetime):
                header['transaction_date'] = header['transaction_date'].isoformat()

        lines = [line.as_dict(convert_datetime_to_iso_string=True) if hasattr(line, 'as_dict') else dict(line)
                 for line in (header.pop('lines', None) or [])]
        header['organization_id'] = organization_id
        if header.get('transaction_type'):
            header['transaction_type'] = normalize_transaction_type(header['transaction_type'])
        return header, lines

    async def create_transaction(
        self,
        request: TransactionPayload,
        *,
        organization_id: str,
        actor_user_id: str,
        idempotency_key: Optional[str] = None
    ) -> ServiceResponse:
        """
        Create a transaction and its lines in one gateway call.

        Returns `{"transaction_id", "lines_created"}` on success and evicts every
        cached read of the organization.
        """
        async def handler():
            header, lines = self._split_payload(request, organization_id)
            header['transaction_date'] = header.get('transaction_date') or _now_iso()
            header['transaction_status'] = header.get('transaction_status') or 'ACTIVE'

            result = await self._send(self._request(
                GatewayAction.CREATE, organization_id, actor_user_id,
                transaction=header, lines=lines,
                options={'idempotency_key': idempotency_key}))
            if not result.success:
                return ServiceResponse.fail(result.error or "Transaction creation failed")

            self.cache.invalidate(organization_id)
            data = _unwrap_payload(result.data) or {}
            return ServiceResponse.ok({
                'transaction_id': data.get('transaction_id') or data.get('id'),
                'lines_created': data.get('lines_created', len(lines)),
            })

        return await self._run('CREATE', organization_id, actor_user_id, handler)

    def _normalize_query(self, query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        query = copy.deepcopy(dict(query or {}))
        filters = dict(query.get('filters') or {})
        if filters.get('transaction_type'):
            filters['transaction_type'] = normalize_transaction_type(filters['transaction_type'])
        query['filters'] = filters
        return query

    async def query_transactions(
        self,
        query: Optional[Dict[str, Any]] = None,
        *,
        organization_id: str,
        actor_user_id: str,
        use_cache: bool = True
    ) -> ServiceResponse:
        """
        List transactions. `query` holds `filters` plus the optional
        `include_lines`, `include_deleted`, `limit` and `offset`.

        Identical queries within the cache window never reach the gateway twice.
        """
        async def handler():
            normalized = self._normalize_query(query)
            cache_key = self._query_cache_key(organization_id, normalized)
            if use_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    return ServiceResponse.ok(
                        copy.deepcopy(cached),
                        build_metadata('QUERY_CACHED', organization_id, actor_user_id))

            include_lines = normalized.get('include_lines')
            options = {
                'filters': normalized['filters'],
                'include_lines': self._config.default_include_lines if include_lines is None else include_lines,
                'include_deleted': normalized.get('include_deleted'),
                'limit': normalized.get('limit', 50),
                'offset': normalized.get('offset', 0),
            }
            result = await self._send(self._request(
                GatewayAction.QUERY, organization_id, actor_user_id, options=options))
            if not result.success:
                return ServiceResponse.fail(result.error or "Transaction query failed")

            data = _unwrap_payload(result.data)
            items = data.get('items', []) if isinstance(data, dict) else (data or [])
            transactions = [_flatten_transaction(item) for item in items]
            self.cache.set(cache_key, transactions)
            return ServiceResponse.ok(copy.deepcopy(transactions))

        return await self._run('QUERY', organization_id, actor_user_id, handler)

    async def get_transaction(
        self,
        transaction_id: str,
        *,
        organization_id: str,
        actor_user_id: str,
        include_lines: Optional[bool] = None,
        use_cache: bool = True
    ) -> ServiceResponse:
        async def handler():
            if not transaction_id:
                return ServiceResponse.fail("Transaction id is required")
            cache_key = self._read_cache_key(organization_id, transaction_id)
            if use_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    return ServiceResponse.ok(
                        copy.deepcopy(cached),
                        build_metadata('READ_CACHED', organization_id, actor_user_id))

            result = await self._send(self._request(
                GatewayAction.READ, organization_id, actor_user_id,
                transaction={'id': transaction_id},
                options={'include_lines': self._config.default_include_lines
                         if include_lines is None else include_lines}))
            if not result.success:
                return ServiceResponse.fail(result.error or "Transaction read failed")

            record = _flatten_transaction(_unwrap_payload(result.data))
            if not record:
                return ServiceResponse.fail("Transaction not found")
            self.cache.set(cache_key, record)
            return ServiceResponse.ok(copy.deepcopy(record))

        return await self._run('READ', organization_id, actor_user_id, handler)

    async def update_transaction(
        self,
        request: TransactionPayload,
        *,
        organization_id: str,
        actor_user_id: str
    ) -> ServiceResponse:
        """Apply a patch (and optional replacement lines) to an existing transaction."""
        async def handler():
            if isinstance(request, Transaction):
                header, lines = self._split_payload(request, organization_id)
            else:
                patch = dict(request)
                if patch.get('organization_id') not in (None, organization_id):
                    raise ValueError(
                        f"Transaction belongs to organization {patch['organization_id']}, not {organization_id}")
                lines = [dict(line) for line in (patch.pop('lines', None) or [])]
                header = {**patch, 'organization_id': organization_id}
                if header.get('transaction_type'):
                    header['transaction_type'] = normalize_transaction_type(header['transaction_type'])
            transaction_id = header.get('id') or header.pop('transaction_id', None)
            if not transaction_id:
                return ServiceResponse.fail("Transaction id is required for update")
            header['id'] = transaction_id

            result = await self._send(self._request(
                GatewayAction.UPDATE, organization_id, actor_user_id,
                transaction=header, lines=lines))
            if not result.success:
                return ServiceResponse.fail(result.error or "Transaction update failed")

            self._invalidate_transaction(organization_id, transaction_id)
            return ServiceResponse.ok(_flatten_transaction(_unwrap_payload(result.data)))

        return await self._run('UPDATE', organization_id, actor_user_id, handler)

    async def _remove(self, action: GatewayAction, transaction_id: str, organization_id: str,
                      actor_user_id: str, reason: Optional[str]) -> ServiceResponse:
        if not transaction_id:
            return ServiceResponse.fail("Transaction id is required")
        result = await self._send(self._request(
            action, organization_id, actor_user_id,
            transaction={'id': transaction_id}, options={'reason': reason}))
        if not result.success:
            return ServiceResponse.fail(result.error or f"Transaction {action.value.lower()} failed")
        self._invalidate_transaction(organization_id, transaction_id)
        return ServiceResponse.ok(_unwrap_payload(result.data))

    async def delete_transaction(
        self,
        transaction_id: str,
        *,
        organization_id: str,
        actor_user_id: str,
        reason: Optional[str] = None
    ) -> ServiceResponse:
        async def handler():
            response = await self._remove(GatewayAction.DELETE, transaction_id,
                                          organization_id, actor_user_id, reason)
            if response.success:
                response.data = {'deleted': True}
            return response

        return await self._run('DELETE', organization_id, actor_user_id, handler)

    async def void_transaction(
        self,
        transaction_id: str,
        *,
        organization_id: str,
        actor_user_id: str,
        reason: Optional[str] = None
    ) -> ServiceResponse:
        """Soft-delete: the record stays for audit but drops out of default queries."""
        async def handler():
            response = await self._remove(GatewayAction.VOID, transaction_id,
                                          organization_id, actor_user_id, reason)
            if response.success:
                response.data = _flatten_transaction(response.data)
            return response

        return await self._run('VOID', organization_id, actor_user_id, handler)

    async def reverse_transaction(
        self,
        transaction_id: str,
        *,
        organization_id: str,
        actor_user_id: str,
        reason: Optional[str] = None
    ) -> ServiceResponse:
        """Post an offsetting transaction; data carries the new transaction id."""
        async def handler():
            return await self._remove(GatewayAction.REVERSE, transaction_id,
                                      organization_id, actor_user_id, reason)

        return await self._run('REVERSE', organization_id, actor_user_id, handler)

    @staticmethod
    def _payload_value(data: Any, key: str) -> Any:
        if isinstance(data, dict):
            return data.get(key)
        return getattr(data, key, None)

    async def _dispatch_batch_item(self, action: Any, data: Any, idempotency_key: Optional[str],
                                   organization_id: str, actor_user_id: str) -> ServiceResponse:
        scope = {'organization_id': organization_id, 'actor_user_id': actor_user_id}
        dispatch = str(action or '').upper()

        if dispatch == 'CREATE':
            return await self.create_transaction(data, idempotency_key=idempotency_key, **scope)
        if dispatch == 'QUERY':
            return await self.query_transactions(data, **scope)
        if dispatch == 'UPDATE':
            return await self.update_transaction(data, **scope)
        if dispatch in ('READ', 'DELETE'):
            transaction_id = (self._payload_value(data, 'id')
                              or self._payload_value(data, 'transaction_id'))
            if dispatch == 'READ':
                return await self.get_transaction(
                    transaction_id, include_lines=self._payload_value(data, 'include_lines'), **scope)
            return await self.delete_transaction(
                transaction_id, reason=self._payload_value(data, 'reason'), **scope)
        return ServiceResponse.fail(
            f"Unknown batch action: {action}",
            build_metadata('BATCH', organization_id, actor_user_id))

    async def _run_batch_item(self, index: int, operation: Dict[str, Any],
                              organization_id: str, actor_user_id: str) -> BatchResult:
        # The result keeps the action exactly as the caller spelled it
        action = operation.get('action')
        try:
            response = await self._dispatch_batch_item(
                action, operation.get('data') or {}, operation.get('idempotency_key'),
                organization_id, actor_user_id)
        except Exception as e:
            logger.exception("Batch item %d (%s) failed", index, action)
            self._last_error = str(e) or type(e).__name__
            response = ServiceResponse.fail(
                self._last_error, build_metadata('BATCH', organization_id, actor_user_id))

        return BatchResult(index=index, action=action, response=response)

    async def batch_operations(
        self,
        *,
        organization_id: str,
        actor_user_id: str,
        transactions: List[Dict[str, Any]]
    ) -> List[BatchResult]:
        """
        Run up to `batch_limit` operations concurrently. Each item is
        `{"action": ..., "data": {...}}`; results are returned in request order
        and each carries its request index. One failure does not stop the others
        and nothing is rolled back.

        Raises:
            BatchLimitExceeded: before anything runs, if the batch is too large.
        """
        if len(transactions) > self._config.batch_limit:
            raise BatchLimitExceeded(len(transactions), self._config.batch_limit)

        if not organization_id or not actor_user_id:
            logger.warning("BATCH rejected: missing organization or user context")
            failure = ServiceResponse.fail(
                AUTH_REQUIRED_MESSAGE, build_metadata('BATCH', organization_id, actor_user_id))
            return [BatchResult(index=index, action=operation.get('action'), response=failure)
                    for index, operation in enumerate(transactions)]

        logger.debug("Running batch of %d operations for organization %s",
                     len(transactions), organization_id)
        return list(await asyncio.gather(*[
            self._run_batch_item(index, operation, organization_id, actor_user_id)
            for index, operation in enumerate(transactions)
        ]))

    def health_check(self) -> Dict[str, Any]:
        """
        `unhealthy` if the cache cannot be inspected, `degraded` if the last
        operation ended in an unexpected exception, `healthy` otherwise.
        """
        try:
            cache_size = self.cache.stats()['size']
        except Exception as e:
            logger.error("Cache introspection failed: %s", e)
            return {
                'status': 'unhealthy',
                'cache': {'size': None},
                'config': self._config.as_dict(),
                'error': str(e),
                'timestamp': _now_iso(),
            }

        return {
            'status': 'degraded' if self._last_error else 'healthy',
            'cache': {'size': cache_size},
            'config': self._config.as_dict(),
            'timestamp': _now_iso(),
        }
