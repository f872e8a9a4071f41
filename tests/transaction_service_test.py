"""
Tests for TransactionService
"""
import asyncio

import pytest

from hera.cache import TtlCache
from hera.config import TransactionServiceConfig
from hera.errors import BatchLimitExceeded
from hera.gateway import GatewayAction, GatewayResponse, InMemoryGateway
from hera.models import Transaction, TransactionLine
from hera.services import AUTH_REQUIRED_MESSAGE, TransactionService

from conftest import ORG_ID, OTHER_ORG_ID, USER_ID, StubGateway, run, sale


class SlowGateway(InMemoryGateway):
    """Delays each call by the `delay` found in the payload, to scramble completion order."""

    async def execute(self, request):
        delay = (request.transaction or {}).get('delay', 0)
        if delay:
            await asyncio.sleep(delay)
        return await super().execute(request)


def _create(service, scope, **overrides):
    response = run(service.create_transaction(sale(**overrides), **scope))
    assert response.success, response.error
    return response.data['transaction_id']


# ===== Authentication =====

@pytest.mark.parametrize("organization_id, actor_user_id", [
    (None, USER_ID), ("", USER_ID), (ORG_ID, None), (ORG_ID, ""), (None, None),
])
def test_every_operation_requires_organization_and_actor(gateway, service, organization_id, actor_user_id):
    scope = {"organization_id": organization_id, "actor_user_id": actor_user_id}
    responses = [
        run(service.create_transaction(sale(), **scope)),
        run(service.query_transactions({}, **scope)),
        run(service.get_transaction("t-1", **scope)),
        run(service.update_transaction({"id": "t-1", "total_amount": 1}, **scope)),
        run(service.delete_transaction("t-1", **scope)),
        run(service.void_transaction("t-1", **scope)),
        run(service.reverse_transaction("t-1", **scope)),
    ]
    responses += [r.response for r in run(service.batch_operations(
        transactions=[{"action": "CREATE", "data": sale()}], **scope))]

    for response in responses:
        assert response.success is False
        assert response.error == AUTH_REQUIRED_MESSAGE
    assert gateway.call_count == 0


# ===== Create =====

def test_create_returns_id_and_line_count(gateway, service, scope):
    response = run(service.create_transaction(sale(), **scope))

    assert response.success
    assert response.data["lines_created"] == 1
    assert response.data["transaction_id"]
    assert response.metadata.operation == "CREATE"
    assert response.metadata.organization_id == ORG_ID
    assert response.metadata.actor_user_id == USER_ID
    assert response.metadata.duration_ms >= 0


def test_create_applies_defaults(gateway, service, scope):
    run(service.create_transaction({"transaction_type": "sale"}, **scope))

    request = gateway.requests[0]
    assert request.action is GatewayAction.CREATE
    assert request.transaction["transaction_status"] == "ACTIVE"
    assert request.transaction["transaction_date"]
    assert request.transaction["transaction_type"] == "SALE"
    assert request.transaction["organization_id"] == ORG_ID
    assert request.lines == []
    assert request.options == {}


def test_create_forwards_idempotency_key(gateway, service, scope):
    first = run(service.create_transaction(sale(), idempotency_key="key-1", **scope))
    second = run(service.create_transaction(sale(), idempotency_key="key-1", **scope))

    assert gateway.requests[0].options == {"idempotency_key": "key-1"}
    assert first.data["transaction_id"] == second.data["transaction_id"]


def test_create_from_model_validates_first(gateway, service, scope):
    txn = Transaction(transaction_type="sale", smart_code="HERA.BAD.v1")
    response = run(service.create_transaction(txn, **scope))

    assert response.success is False
    assert "Invalid smart_code" in response.error
    assert gateway.call_count == 0


def test_create_from_model(gateway, service, scope):
    txn = Transaction(transaction_type="sale", smart_code="HERA.SALON.POS.SALE.TXN.RETAIL.v1",
                      total_amount=50, lines=[TransactionLine(line_number=1, line_amount=50)])
    response = run(service.create_transaction(txn, **scope))

    assert response.success, response.error
    assert response.data["lines_created"] == 1
    assert gateway.requests[0].lines[0]["line_amount"] == 50
    assert "lines" not in gateway.requests[0].transaction


def test_create_rejects_other_organization(gateway, service, scope):
    response = run(service.create_transaction(sale(organization_id=OTHER_ORG_ID), **scope))

    assert response.success is False
    assert OTHER_ORG_ID in response.error
    assert gateway.call_count == 0


def test_gateway_failure_is_passed_through_verbatim(scope):
    gateway = StubGateway(GatewayResponse(success=False, error="HERA_SMART_CODE_INVALID: bad code"))
    service = TransactionService(gateway=gateway)

    response = run(service.create_transaction(sale(), **scope))

    assert response.success is False
    assert response.error == "HERA_SMART_CODE_INVALID: bad code"
    assert response.data is None


def test_unexpected_exception_becomes_failure_envelope(scope):
    service = TransactionService(gateway=StubGateway(error=ConnectionError("connection reset")))

    response = run(service.create_transaction(sale(), **scope))

    assert response.success is False
    assert response.error == "connection reset"
    assert response.metadata.operation == "CREATE"


def test_nested_create_response_is_unwrapped(scope):
    gateway = StubGateway(GatewayResponse(success=True, data={
        "success": True, "data": {"transaction_id": "t-9", "lines_created": 2}}))
    service = TransactionService(gateway=gateway)

    response = run(service.create_transaction(sale(), **scope))

    assert response.data == {"transaction_id": "t-9", "lines_created": 2}


# ===== Query =====

def test_identical_queries_hit_the_gateway_once(gateway, service, scope):
    _create(service, scope)
    calls_before = gateway.call_count
    query = {"filters": {"transaction_type": "SALE"}}

    first = run(service.query_transactions(query, **scope))
    second = run(service.query_transactions(query, **scope))

    assert gateway.call_count == calls_before + 1
    assert first.metadata.operation == "QUERY"
    assert second.metadata.operation == "QUERY_CACHED"
    assert second.data == first.data
    assert len(first.data) == 1


def test_query_cache_key_ignores_transaction_type_case(gateway, service, scope):
    run(service.query_transactions({"filters": {"transaction_type": "sale"}}, **scope))
    response = run(service.query_transactions({"filters": {"transaction_type": "SALE"}}, **scope))

    assert gateway.call_count == 1
    assert response.metadata.operation == "QUERY_CACHED"


def test_empty_result_is_cached(gateway, service, scope):
    run(service.query_transactions({}, **scope))
    response = run(service.query_transactions({}, **scope))

    assert response.data == []
    assert gateway.call_count == 1


def test_use_cache_false_always_calls_gateway(gateway, service, scope):
    run(service.query_transactions({}, **scope))
    run(service.query_transactions({}, use_cache=False, **scope))

    assert gateway.call_count == 2


def test_cached_results_cannot_be_mutated_by_callers(gateway, service, scope):
    _create(service, scope)
    first = run(service.query_transactions({}, **scope))
    first.data[0]["total_amount"] = -1

    second = run(service.query_transactions({}, **scope))
    assert second.data[0]["total_amount"] == 100.0


def test_query_defaults(gateway, service, scope):
    run(service.query_transactions({"filters": {"source_entity_id": "c-1"}}, **scope))

    options = gateway.requests[0].options
    assert options["filters"] == {"source_entity_id": "c-1"}
    assert options["include_lines"] is True
    assert options["limit"] == 50
    assert options["offset"] == 0


def test_query_respects_include_lines_config(gateway, scope):
    service = TransactionService(gateway=gateway,
                                 config=TransactionServiceConfig(default_include_lines=False))
    run(service.query_transactions({}, **scope))
    run(service.query_transactions({"include_lines": True}, **scope))

    assert gateway.requests[0].options["include_lines"] is False
    assert gateway.requests[1].options["include_lines"] is True


def test_query_flattens_header_and_lines(scope):
    gateway = StubGateway(GatewayResponse(success=True, data={"success": True, "data": {"items": [
        {"header": {"id": "t-1", "transaction_type": "SALE"}, "lines": [{"line_number": 1}]},
    ]}}))
    service = TransactionService(gateway=gateway)

    response = run(service.query_transactions({}, **scope))

    assert response.data == [{"id": "t-1", "transaction_type": "SALE", "lines": [{"line_number": 1}]}]


def test_query_caches_are_per_organization(gateway, service, scope):
    _create(service, scope)
    other = {"organization_id": OTHER_ORG_ID, "actor_user_id": USER_ID}

    mine = run(service.query_transactions({}, **scope))
    theirs = run(service.query_transactions({}, **other))

    assert len(mine.data) == 1
    assert theirs.data == []
    assert theirs.metadata.operation == "QUERY"


def test_query_with_date_only_filter(gateway, service, scope):
    _create(service, scope)

    response = run(service.query_transactions({"filters": {"date_from": "2024-01-01"}}, **scope))

    assert response.success, response.error
    assert len(response.data) == 1


def test_create_after_delete_reuses_idempotency_key(gateway, service, scope):
    first = run(service.create_transaction(sale(), idempotency_key="k1", **scope))
    run(service.delete_transaction(first.data["transaction_id"], **scope))

    second = run(service.create_transaction(sale(), idempotency_key="k1", **scope))

    assert second.success, second.error
    assert second.data["transaction_id"] != first.data["transaction_id"]


def test_query_cache_expires_after_ttl(gateway, scope):
    service = TransactionService(gateway=gateway, cache=TtlCache(ttl_ms=5))
    run(service.query_transactions({}, **scope))
    run(asyncio.sleep(0.02))
    response = run(service.query_transactions({}, **scope))

    assert response.metadata.operation == "QUERY"
    assert gateway.call_count == 2


# ===== Invalidation =====

def test_create_invalidates_organization_queries(gateway, service, scope):
    run(service.query_transactions({}, **scope))
    _create(service, scope)

    response = run(service.query_transactions({}, **scope))

    assert response.metadata.operation == "QUERY"
    assert len(response.data) == 1
    assert gateway.call_count == 3


def test_create_does_not_invalidate_other_organizations(gateway, service, scope):
    other = {"organization_id": OTHER_ORG_ID, "actor_user_id": USER_ID}
    run(service.query_transactions({}, **other))
    _create(service, scope)

    assert run(service.query_transactions({}, **other)).metadata.operation == "QUERY_CACHED"


def test_update_invalidates_read_and_query_caches(gateway, service, scope):
    transaction_id = _create(service, scope)
    run(service.get_transaction(transaction_id, **scope))
    run(service.query_transactions({}, **scope))

    updated = run(service.update_transaction(
        {"id": transaction_id, "transaction_status": "refunded", "total_amount": 250.0}, **scope))
    assert updated.success, updated.error
    assert updated.data["total_amount"] == 250.0

    read = run(service.get_transaction(transaction_id, **scope))
    listed = run(service.query_transactions({}, **scope))
    assert read.metadata.operation == "READ"
    assert read.data["transaction_status"] == "refunded"
    assert listed.metadata.operation == "QUERY"
    assert listed.data[0]["total_amount"] == 250.0


def test_update_calls_both_invalidations(gateway, scope):
    cache = TtlCache()
    service = TransactionService(gateway=gateway, cache=cache)
    transaction_id = _create(service, scope)
    cache.set(f"unrelated:{transaction_id}", "stale")
    cache.set(f"{ORG_ID}:query:other", "stale")

    run(service.update_transaction({"id": transaction_id, "total_amount": 1}, **scope))

    assert cache.get(f"unrelated:{transaction_id}") is None
    assert cache.get(f"{ORG_ID}:query:other") is None


def test_failed_update_keeps_cache(gateway, service, scope):
    run(service.query_transactions({}, **scope))
    response = run(service.update_transaction({"id": "missing", "total_amount": 1}, **scope))

    assert response.success is False
    assert "not found" in response.error
    assert run(service.query_transactions({}, **scope)).metadata.operation == "QUERY_CACHED"


def test_update_requires_id(gateway, service, scope):
    response = run(service.update_transaction({"total_amount": 1}, **scope))

    assert response.success is False
    assert response.error == "Transaction id is required for update"
    assert gateway.call_count == 0


def test_delete_invalidates_and_returns_deleted(gateway, service, scope):
    transaction_id = _create(service, scope)
    run(service.get_transaction(transaction_id, **scope))

    response = run(service.delete_transaction(transaction_id, reason="duplicate", **scope))

    assert response.success
    assert response.data == {"deleted": True}
    assert gateway.requests[-1].options == {"reason": "duplicate"}
    read = run(service.get_transaction(transaction_id, **scope))
    assert read.success is False
    assert "not found" in read.error


# ===== Read =====

def test_get_transaction_is_cached(gateway, service, scope):
    transaction_id = _create(service, scope)

    first = run(service.get_transaction(transaction_id, **scope))
    second = run(service.get_transaction(transaction_id, **scope))

    assert first.data["id"] == transaction_id
    assert len(first.data["lines"]) == 1
    assert second.metadata.operation == "READ_CACHED"
    assert second.data == first.data
    assert gateway.call_count == 2


def test_get_transaction_without_lines(gateway, service, scope):
    transaction_id = _create(service, scope)
    response = run(service.get_transaction(transaction_id, include_lines=False, **scope))

    assert "lines" not in response.data or response.data["lines"] == []
    assert gateway.requests[-1].options == {"include_lines": False}


def test_get_transaction_from_other_organization_fails(gateway, service, scope):
    transaction_id = _create(service, scope)
    response = run(service.get_transaction(
        transaction_id, organization_id=OTHER_ORG_ID, actor_user_id=USER_ID))

    assert response.success is False


def test_get_transaction_empty_data_is_not_found(scope):
    service = TransactionService(gateway=StubGateway(GatewayResponse(success=True, data=None)))

    response = run(service.get_transaction("t-1", **scope))

    assert response.success is False
    assert response.error == "Transaction not found"


# ===== Void / reverse =====

def test_void_hides_transaction_from_default_queries(gateway, service, scope):
    transaction_id = _create(service, scope)

    voided = run(service.void_transaction(transaction_id, reason="customer cancelled", **scope))
    assert voided.success
    assert voided.data["transaction_status"] == "VOIDED"

    assert run(service.query_transactions({}, **scope)).data == []
    audit = run(service.query_transactions({"include_deleted": True}, **scope))
    assert [t["id"] for t in audit.data] == [transaction_id]


def test_reverse_posts_offsetting_transaction(gateway, service, scope):
    transaction_id = _create(service, scope, amount=80.0)

    reversed_ = run(service.reverse_transaction(transaction_id, reason="refund", **scope))
    assert reversed_.success
    reversal_id = reversed_.data["transaction_id"]

    reversal = run(service.get_transaction(reversal_id, **scope))
    assert reversal.data["total_amount"] == -80.0
    assert reversal.data["lines"][0]["line_amount"] == -80.0
    original = run(service.get_transaction(transaction_id, **scope))
    assert original.data["transaction_status"] == "REVERSED"


# ===== Timeouts =====

def test_gateway_timeout_becomes_failure(scope):
    gateway = StubGateway(delay=1)
    service = TransactionService(gateway=gateway, config=TransactionServiceConfig(gateway_timeout=0.01))

    response = run(service.query_transactions({}, **scope))

    assert response.success is False
    assert "timed out" in response.error


def test_no_timeout_by_default(scope):
    gateway = StubGateway(GatewayResponse(success=True, data={"items": []}), delay=0.02)
    service = TransactionService(gateway=gateway)

    assert run(service.query_transactions({}, **scope)).success


# ===== Batch =====

def test_batch_returns_one_result_per_operation_in_index_order(scope):
    gateway = SlowGateway()
    service = TransactionService(gateway=gateway)
    operations = [{"action": "CREATE", "data": sale(delay=0.03 - i * 0.01)} for i in range(3)]

    results = run(service.batch_operations(transactions=operations, **scope))

    assert [r.index for r in results] == [0, 1, 2]
    assert all(r.success for r in results)
    assert all(r.action == "CREATE" for r in results)


def test_batch_mixes_actions_and_isolates_failures(gateway, service, scope):
    transaction_id = _create(service, scope)
    operations = [
        {"action": "READ", "data": {"id": transaction_id}},
        {"action": "UPDATE", "data": {"id": "missing", "total_amount": 1}},
        {"action": "QUERY", "data": {"filters": {}}},
        {"action": "create", "data": sale()},
        {"action": "DELETE", "data": {"transaction_id": transaction_id}},
    ]

    results = run(service.batch_operations(transactions=operations, **scope))

    assert len(results) == 5
    assert [r.success for r in results] == [True, False, True, True, True]
    assert results[3].action == "create"
    assert results[4].data == {"deleted": True}


def test_batch_unknown_action_fails_only_that_item(gateway, service, scope):
    results = run(service.batch_operations(
        transactions=[{"action": "FROB", "data": {}}], **scope))

    assert len(results) == 1
    assert results[0].success is False
    assert results[0].action == "FROB"
    assert results[0].index == 0
    assert "FROB" in results[0].error
    assert gateway.call_count == 0


def test_batch_accepts_model_payloads(gateway, service, scope):
    txn = Transaction(transaction_type="sale", smart_code="HERA.SALON.POS.SALE.TXN.RETAIL.v1",
                      total_amount=30, lines=[TransactionLine(line_number=1, line_amount=30)])
    created = run(service.create_transaction(sale(), **scope))
    existing = Transaction(id=created.data["transaction_id"])

    results = run(service.batch_operations(transactions=[
        {"action": "CREATE", "data": txn},
        {"action": "READ", "data": existing},
    ], **scope))

    assert [r.success for r in results] == [True, True]
    assert results[0].data["lines_created"] == 1
    assert results[1].data["id"] == existing.id


def test_batch_item_exception_becomes_failed_result(scope):
    service = TransactionService(gateway=StubGateway(error=ConnectionError("connection reset")))

    class Exploding:
        def __getattr__(self, name):
            raise RuntimeError("unreadable payload")

    results = run(service.batch_operations(transactions=[
        {"action": "DELETE", "data": Exploding()},
        {"action": "QUERY", "data": {}},
    ], **scope))

    assert [r.index for r in results] == [0, 1]
    assert results[0].success is False
    assert results[0].error == "unreadable payload"
    assert results[1].error == "connection reset"


def test_batch_results_keep_the_action_as_sent(gateway, service, scope):
    results = run(service.batch_operations(transactions=[
        {"action": "query", "data": {}},
        {"action": "Frob", "data": {}},
    ], **scope))

    assert [r.action for r in results] == ["query", "Frob"]
    assert results[0].success is True


def test_unauthenticated_batch_reports_auth_for_every_item(gateway, service):
    results = run(service.batch_operations(
        transactions=[{"action": "FROB"}, {"action": "QUERY", "data": {}}],
        organization_id=ORG_ID, actor_user_id=None))

    assert [r.action for r in results] == ["FROB", "QUERY"]
    assert all(r.error == AUTH_REQUIRED_MESSAGE for r in results)
    assert gateway.call_count == 0


def test_batch_over_limit_raises_before_any_call(gateway, service, scope):
    operations = [{"action": "CREATE", "data": sale()}] * 51

    with pytest.raises(BatchLimitExceeded):
        run(service.batch_operations(transactions=operations, **scope))
    assert gateway.call_count == 0


def test_batch_limit_is_configurable(gateway, service, scope):
    service.update_config(batch_limit=2)

    with pytest.raises(BatchLimitExceeded) as exc:
        run(service.batch_operations(transactions=[{"action": "QUERY", "data": {}}] * 3, **scope))
    assert exc.value.limit == 2

    results = run(service.batch_operations(transactions=[{"action": "QUERY", "data": {}}] * 2, **scope))
    assert len(results) == 2


def test_batch_result_as_dict(gateway, service, scope):
    result = run(service.batch_operations(transactions=[{"action": "FROB"}], **scope))[0]
    data = result.as_dict()
    assert data["index"] == 0
    assert data["action"] == "FROB"
    assert data["success"] is False


# ===== Health and config =====

def test_health_check_healthy(service):
    health = service.health_check()

    assert health["status"] == "healthy"
    assert health["cache"]["size"] >= 0
    assert health["config"]["batch_limit"] == 50
    assert health["timestamp"]


def test_health_check_degraded_after_unexpected_error(scope):
    service = TransactionService(gateway=StubGateway(error=RuntimeError("boom")))
    run(service.query_transactions({}, **scope))

    assert service.health_check()["status"] == "degraded"


def test_health_check_unhealthy_when_cache_breaks(service):
    class BrokenCache(TtlCache):
        def stats(self):
            raise RuntimeError("cache gone")

    service.cache = BrokenCache()
    health = service.health_check()
    assert health["status"] == "unhealthy"
    assert health["error"] == "cache gone"


def test_update_config(service):
    config = service.update_config(default_cache_stale_time=1000, log_level="warn")

    assert config.default_cache_stale_time == 1000
    assert service.cache.ttl_ms == 1000
    assert service.config.log_level == "warn"


def test_update_config_rejects_unknown_and_invalid_values(service):
    with pytest.raises(ValueError):
        service.update_config(colour="blue")
    with pytest.raises(ValueError):
        service.update_config(log_level="verbose")
    assert service.config.log_level == "debug"
