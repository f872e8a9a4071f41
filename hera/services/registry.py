"""
Composition root: one TransactionService per process, built on first use.
"""
import logging
from typing import Optional

from hera.cache import TtlCache
from hera.config import TransactionServiceConfig
from hera.gateway import TransactionGateway
from hera.services.transaction_service import TransactionService

logger = logging.getLogger(__name__)

_service: Optional[TransactionService] = None


def _default_gateway() -> TransactionGateway:
    from hera.config import PostgresConfig
    from hera.gateway.postgresql import PostgreSQLGateway
    return PostgreSQLGateway(PostgresConfig.from_env())


def get_transaction_service(
    gateway: Optional[TransactionGateway] = None,
    config: Optional[TransactionServiceConfig] = None
) -> TransactionService:
    """
    Return the process-wide service. Arguments are only used the first time;
    without a gateway the service talks to Postgres configured from the environment.
    """
    global _service
    if _service is None:
        config = config or TransactionServiceConfig.from_env()
        _service = TransactionService(
            gateway=gateway or _default_gateway(),
            cache=TtlCache(ttl_ms=config.default_cache_stale_time),
            config=config,
        )
        logger.info("Transaction service created with %s", type(_service.gateway).__name__)
    elif gateway is not None or config is not None:
        logger.warning("Transaction service already created; ignoring gateway/config arguments")
    return _service


def reset_transaction_service():
    """Drop the process-wide service so the next call builds a new one."""
    global _service
    _service = None
