"""
Config classes that read their values from the environment and/or a .env file.
"""
import os
import json
import logging
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

LOG_LEVELS = ('error', 'warn', 'info', 'debug')


class BaseConfig():
    """
    Config class that loads a .env file and exposes the environment.
    """
    def __init__(self):
        load_dotenv()
        # Get all environment variables and store them in a dictionary
        self.env_vars = {key: os.getenv(key) for key in os.environ}

    def get_env_vars(self) -> dict:
        """
        Return the dictionary containing all environment variables
        """
        return self.env_vars

    def get_env_var(self, var_name: str, default=None):
        """
        Retrieve the value of the specified environment variable
        Args:
            var_name (str) : Name of the env var to fetch
            default : Value returned when the variable is not set
        """
        if var_name in self.env_vars.keys():
            return self.env_vars[var_name]
        logger.debug("Variable %s not found.", var_name)
        return default

    def get_int(self, var_name: str, default: Optional[int] = None) -> Optional[int]:
        value = self.get_env_var(var_name)
        if value is None or value == '':
            return default
        try:
            return int(value)
        except ValueError:
            logger.error("Error: %s must be an integer, got %r.", var_name, value)
            return default

    def get_float(self, var_name: str, default: Optional[float] = None) -> Optional[float]:
        value = self.get_env_var(var_name)
        if value is None or value == '':
            return default
        try:
            return float(value)
        except ValueError:
            logger.error("Error: %s must be a number, got %r.", var_name, value)
            return default

    def get_bool(self, var_name: str, default: bool = False) -> bool:
        value = self.get_env_var(var_name)
        if value is None or value == '':
            return default
        return value.strip().lower() in ('1', 'true', 'yes', 'on')

    def convert_var_from_json_string(self, var_name: str) -> bool:
        """
        Converts a json string into a pythonic type
        """
        if var_name in self.env_vars.keys():
            try:
                self.env_vars[var_name] = json.loads(self.env_vars[var_name])
                return True
            except ValueError:
                logger.error("Error: Invalid input format. Please provide a proper json string.")
                return False
        logger.warning("Warning: var %s not found.", var_name)
        return False


@dataclass
class TransactionServiceConfig:
    """Runtime knobs of the transaction service. All of them may be changed through `update_config`."""

    default_cache_stale_time: int = 5 * 60 * 1000  # ms
    default_include_lines: bool = True
    log_level: str = 'info'
    batch_limit: int = 50
    # Seconds; None waits on the gateway for as long as it takes
    gateway_timeout: Optional[float] = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")
        if self.batch_limit < 1:
            raise ValueError(f"batch_limit must be positive, got {self.batch_limit}")
        if self.default_cache_stale_time < 0:
            raise ValueError("default_cache_stale_time cannot be negative")
        if self.gateway_timeout is not None and self.gateway_timeout <= 0:
            raise ValueError("gateway_timeout must be positive when set")

    @classmethod
    def from_env(cls, config: Optional[BaseConfig] = None) -> "TransactionServiceConfig":
        config = config or BaseConfig()
        defaults = cls()
        return cls(
            default_cache_stale_time=config.get_int('HERA_CACHE_STALE_TIME', defaults.default_cache_stale_time),
            default_include_lines=config.get_bool('HERA_INCLUDE_LINES', defaults.default_include_lines),
            log_level=(config.get_env_var('HERA_LOG_LEVEL') or defaults.log_level).lower(),
            batch_limit=config.get_int('HERA_BATCH_LIMIT', defaults.batch_limit),
            gateway_timeout=config.get_float('HERA_GATEWAY_TIMEOUT', defaults.gateway_timeout),
        )

    def updated(self, **overrides: Any) -> "TransactionServiceConfig":
        """Return a copy with `overrides` applied. Unknown keys raise ValueError."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        values = asdict(self)
        values.update(overrides)
        return TransactionServiceConfig(**values)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PostgresConfig:
    """Connection parameters for the database hosting the transaction CRUD function."""

    host: str = 'localhost'
    port: int = 5432
    user: str = 'postgres'
    password: Optional[str] = None
    database: str = 'postgres'

    @classmethod
    def from_env(cls, config: Optional[BaseConfig] = None) -> "PostgresConfig":
        config = config or BaseConfig()
        return cls(
            host=config.get_env_var('POSTGRES_HOST', 'localhost'),
            port=config.get_int('POSTGRES_PORT', 5432),
            user=config.get_env_var('POSTGRES_USER', 'postgres'),
            password=config.get_env_var('POSTGRES_PASSWORD'),
            database=config.get_env_var('POSTGRES_DB', 'postgres'),
        )
