"""config module"""

from .config import BaseConfig, TransactionServiceConfig, PostgresConfig, LOG_LEVELS
