"""
Dict-backed gateway for tests and local development.

Implements every gateway action against per-organization storage, so
cross-organization reads behave like they do against the database.
"""
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse

from hera.gateway.base import GatewayAction, GatewayRequest, GatewayResponse, TransactionGateway
from hera.models.transaction import normalize_transaction_type
from hera.models.universal_model import get_uuid_str

logger = logging.getLogger(__name__)

# Filters that are not plain column equality
RANGE_FILTERS = {'date_from', 'date_to', 'include_lines', 'include_deleted', 'limit', 'offset'}
VOIDED_STATUSES = {'VOIDED', 'DELETED'}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_datetime(value) -> datetime:
    """Parse a stored or filter date; naive values are taken as UTC."""
    parsed = value if isinstance(value, datetime) else isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InMemoryGateway(TransactionGateway):
    """Keeps transactions in memory and records every request it receives."""

    def __init__(self):
        self._transactions: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._idempotency: Dict[str, Dict[str, str]] = {}
        self.requests: List[GatewayRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def _store(self, organization_id: str) -> Dict[str, Dict[str, Any]]:
        return self._transactions.setdefault(organization_id, {})

    async def execute(self, request: GatewayRequest) -> GatewayResponse:
        self.requests.append(copy.deepcopy(request))
        handler = getattr(self, f"_{GatewayAction(request.action).value.lower()}", None)
        if handler is None:
            return GatewayResponse(success=False, error=f"Unsupported action: {request.action}")
        return handler(request)

    def _render(self, record: Dict[str, Any], include_lines: bool = True) -> Dict[str, Any]:
        rendered = copy.deepcopy(record)
        if not include_lines:
            rendered.pop('lines', None)
        return rendered

    def _build_lines(self, transaction_id: str, organization_id: str,
                     lines: List[Dict[str, Any]], actor_user_id: str) -> List[Dict[str, Any]]:
        built = []
        for number, line in enumerate(lines, start=1):
            row = copy.deepcopy(line)
            row.setdefault('id', get_uuid_str())
            row.setdefault('line_number', number)
            row['transaction_id'] = transaction_id
            row['organization_id'] = organization_id
            row.setdefault('created_by', actor_user_id)
            built.append(row)
        return built

    def _create(self, request: GatewayRequest) -> GatewayResponse:
        if not request.transaction:
            return GatewayResponse(success=False, error="Transaction payload is required")

        key = request.options.get('idempotency_key')
        seen = self._idempotency.setdefault(request.organization_id, {})
        existing = self._store(request.organization_id).get(seen.get(key)) if key else None
        if existing is not None:
            return GatewayResponse(success=True, data={
                'transaction_id': existing['id'],
                'lines_created': len(existing['lines']),
                'idempotent_replay': True,
            })

        record = copy.deepcopy(request.transaction)
        transaction_id = record.get('id') or get_uuid_str()
        now = _now_iso()
        record.update({
            'id': transaction_id,
            'organization_id': request.organization_id,
            'transaction_type': normalize_transaction_type(record.get('transaction_type')),
            'created_at': now,
            'updated_at': now,
            'created_by': request.actor_user_id,
            'updated_by': request.actor_user_id,
            'version': 1,
            'deleted_at': None,
        })
        record['lines'] = self._build_lines(
            transaction_id, request.organization_id, request.lines, request.actor_user_id)
        self._store(request.organization_id)[transaction_id] = record
        if key:
            seen[key] = transaction_id

        return GatewayResponse(success=True, data={
            'transaction_id': transaction_id,
            'lines_created': len(record['lines']),
        })

    def _find(self, request: GatewayRequest) -> Optional[Dict[str, Any]]:
        transaction_id = (request.transaction or {}).get('id')
        if not transaction_id:
            return None
        return self._store(request.organization_id).get(transaction_id)

    def _not_found(self, request: GatewayRequest) -> GatewayResponse:
        transaction_id = (request.transaction or {}).get('id')
        return GatewayResponse(success=False, error=f"Transaction not found: {transaction_id}")

    def _read(self, request: GatewayRequest) -> GatewayResponse:
        record = self._find(request)
        if record is None:
            return self._not_found(request)
        return GatewayResponse(success=True, data=self._render(
            record, request.options.get('include_lines', True)))

    def _update(self, request: GatewayRequest) -> GatewayResponse:
        record = self._find(request)
        if record is None:
            return self._not_found(request)

        patch = {k: v for k, v in request.transaction.items()
                 if k not in ('id', 'organization_id', 'created_at', 'created_by', 'lines')}
        if 'transaction_type' in patch:
            patch['transaction_type'] = normalize_transaction_type(patch['transaction_type'])
        record.update(patch)
        if request.lines:
            record['lines'] = self._build_lines(
                record['id'], request.organization_id, request.lines, request.actor_user_id)
        record['updated_at'] = _now_iso()
        record['updated_by'] = request.actor_user_id
        record['version'] = record.get('version', 1) + 1
        return GatewayResponse(success=True, data=self._render(record))

    def _delete(self, request: GatewayRequest) -> GatewayResponse:
        record = self._find(request)
        if record is None:
            return self._not_found(request)
        del self._store(request.organization_id)[record['id']]
        seen = self._idempotency.get(request.organization_id, {})
        for key in [k for k, v in seen.items() if v == record['id']]:
            del seen[key]
        logger.debug("Deleted transaction %s (reason: %s)", record['id'], request.options.get('reason'))
        return GatewayResponse(success=True, data={'deleted': True, 'transaction_id': record['id']})

    def _void(self, request: GatewayRequest) -> GatewayResponse:
        record = self._find(request)
        if record is None:
            return self._not_found(request)
        now = _now_iso()
        record['transaction_status'] = 'VOIDED'
        record['deleted_at'] = now
        record['updated_at'] = now
        record['updated_by'] = request.actor_user_id
        record['metadata'] = {**(record.get('metadata') or {}), 'void_reason': request.options.get('reason')}
        return GatewayResponse(success=True, data=self._render(record))

    def _reverse(self, request: GatewayRequest) -> GatewayResponse:
        original = self._find(request)
        if original is None:
            return self._not_found(request)
        reversal_id = get_uuid_str()
        now = _now_iso()
        reversal = copy.deepcopy(original)
        reversal.update({
            'id': reversal_id,
            'total_amount': -(original.get('total_amount') or 0),
            'transaction_status': 'ACTIVE',
            'created_at': now,
            'updated_at': now,
            'created_by': request.actor_user_id,
            'updated_by': request.actor_user_id,
            'version': 1,
            'metadata': {
                **(original.get('metadata') or {}),
                'reversal_of': original['id'],
                'reversal_reason': request.options.get('reason'),
            },
        })
        for line in reversal['lines']:
            line['id'] = get_uuid_str()
            line['transaction_id'] = reversal_id
            for amount in ('quantity', 'line_amount', 'discount_amount', 'tax_amount'):
                if line.get(amount) is not None:
                    line[amount] = -line[amount]
        self._store(request.organization_id)[reversal_id] = reversal
        original['transaction_status'] = 'REVERSED'
        original['updated_at'] = now
        original['updated_by'] = request.actor_user_id
        return GatewayResponse(success=True, data={
            'transaction_id': reversal_id,
            'reversed_transaction_id': original['id'],
        })

    def _matches(self, record: Dict[str, Any], filters: Dict[str, Any], include_deleted: bool) -> bool:
        if not include_deleted and (record.get('deleted_at') or record.get('transaction_status') in VOIDED_STATUSES):
            return False
        for key, expected in filters.items():
            if key in RANGE_FILTERS or expected is None:
                continue
            if key == 'transaction_type':
                expected = normalize_transaction_type(expected)
            if record.get(key) != expected:
                return False
        transaction_date = record.get('transaction_date')
        if filters.get('date_from') and (not transaction_date or
                                         _as_datetime(transaction_date) < _as_datetime(filters['date_from'])):
            return False
        if filters.get('date_to') and (not transaction_date or
                                       _as_datetime(transaction_date) > _as_datetime(filters['date_to'])):
            return False
        return True

    def _query(self, request: GatewayRequest) -> GatewayResponse:
        options = request.options
        filters = options.get('filters') or {}
        include_deleted = bool(options.get('include_deleted') or filters.get('include_deleted'))
        include_lines = options.get('include_lines', True)
        limit = options.get('limit', 50)
        offset = options.get('offset', 0)

        matched = [r for r in self._store(request.organization_id).values()
                   if self._matches(r, filters, include_deleted)]
        matched.sort(key=lambda r: r.get('created_at') or '')
        page = matched[offset:offset + limit] if limit is not None else matched[offset:]
        return GatewayResponse(success=True, data={
            'items': [self._render(r, include_lines) for r in page],
            'total': len(matched),
            'limit': limit,
            'offset': offset,
        })
