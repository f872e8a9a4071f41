"""services module"""

from .transaction_service import TransactionService, BatchResult, AUTH_REQUIRED_MESSAGE
from .registry import get_transaction_service, reset_transaction_service
