"""
Shared pytest fixtures for the transaction core tests.
"""
import asyncio
from typing import List

import pytest

from hera.config import TransactionServiceConfig
from hera.gateway import GatewayRequest, GatewayResponse, InMemoryGateway, TransactionGateway
from hera.services import TransactionService

ORG_ID = "11111111-1111-4111-8111-111111111111"
OTHER_ORG_ID = "22222222-2222-4222-8222-222222222222"
USER_ID = "99999999-9999-4999-8999-999999999999"


class StubGateway(TransactionGateway):
    """Gateway double returning a fixed response (or raising) and recording requests."""

    def __init__(self, response: GatewayResponse = None, error: Exception = None, delay: float = 0):
        self.response = response or GatewayResponse(success=True, data={})
        self.error = error
        self.delay = delay
        self.requests: List[GatewayRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def execute(self, request: GatewayRequest) -> GatewayResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def sale(amount=100.0, **overrides):
    payload = {
        "transaction_type": "sale",
        "smart_code": "HERA.SALON.POS.SALE.TXN.RETAIL.v1",
        "total_amount": amount,
        "lines": [
            {"line_number": 1, "line_type": "service", "description": "Haircut",
             "quantity": 1, "unit_amount": amount, "line_amount": amount,
             "smart_code": "HERA.SALON.SERVICE.LINE.ITEM.v1"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def service(gateway):
    return TransactionService(gateway=gateway, config=TransactionServiceConfig(log_level='debug'))


@pytest.fixture
def scope():
    return {"organization_id": ORG_ID, "actor_user_id": USER_ID}
