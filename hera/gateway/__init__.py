"""gateway module"""

from .base import GatewayAction, GatewayRequest, GatewayResponse, TransactionGateway
from .memory import InMemoryGateway
import logging

logger = logging.getLogger(__name__)


# Conditional import - only import if dependencies are available
try:
    from .postgresql import PostgreSQLGateway
except ImportError:
    logger.info("PostgreSQLGateway not loaded - probably, missing dependencies")
