"""
Adapters package for the Admission Service.

Wraps the shared store client. Adapters encapsulate connection setup,
timeouts and error mapping onto shared errors, and nothing else.
"""

from .redis_store import RedisStore

__all__ = ["RedisStore"]
