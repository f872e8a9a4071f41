"""cache module"""

from .ttl_cache import TtlCache, DEFAULT_TTL_MS
