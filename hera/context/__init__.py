"""context module"""

from .auth_context import AuthContext, auth_context, get_auth_context, set_auth_context, reset_auth_context
from .transaction_context import TransactionContext
