"""
Cache entity kinds, their key templates and TTL classes.

Templates must stay byte-for-byte stable: entries written under an old
template are never invalidated by code using a new one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Tuple

from shared.errors import ConfigurationError

from ..domain.models import UsagePeriod


class TTLClass(int, Enum):
    """Staleness tiers in seconds."""
    SHORT = 300       # volatile listings and counters
    MEDIUM = 1800     # per-user aggregates
    LONG = 7200       # rarely-changing metadata


class CacheKind(Enum):
    """Each cached entity kind maps to one template and one TTL class."""

    USER_PROFILE = ("user_profile:{0}", TTLClass.MEDIUM)
    USER_SETTINGS = ("user_settings:{0}", TTLClass.MEDIUM)
    USER_SECURITY = ("user_security:{0}", TTLClass.MEDIUM)
    API_SERVICE = ("api_service:{0}", TTLClass.LONG)
    SELLER_SERVICES = ("api_services:seller:{0}", TTLClass.MEDIUM)
    ACTIVE_SERVICES = ("api_services:all", TTLClass.SHORT)
    USER_SUBSCRIPTIONS = ("subscriptions:{0}", TTLClass.MEDIUM)
    USAGE_STATS = ("usage_stats:{0}:{1}", TTLClass.SHORT)
    API_DOC = ("api_doc:{0}", TTLClass.LONG)

    def __init__(self, template: str, ttl_class: TTLClass):
        self.template = template
        self.ttl_class = ttl_class

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl_class)

    @property
    def arity(self) -> int:
        return self.template.count("{")


def _entity_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError("Cache id must be a non-negative integer", {"id": repr(value)})
    return value


@dataclass(frozen=True)
class KeyScheme:
    """Renders deterministic store keys, optionally namespaced by ``prefix``."""

    prefix: str = ""

    def _parts(self, kind: CacheKind, ident: Any) -> Tuple[Any, ...]:
        if kind.arity == 0:
            if ident is not None:
                raise ConfigurationError(f"{kind.name} takes no id", {"id": repr(ident)})
            return ()
        if kind is CacheKind.USAGE_STATS:
            if not isinstance(ident, tuple) or len(ident) != 2:
                raise ConfigurationError("USAGE_STATS id must be (user_id, period)", {"id": repr(ident)})
            user_id, period = ident
            try:
                period = UsagePeriod(period)
            except ValueError:
                raise ConfigurationError("Unknown usage period", {"period": repr(period)})
            return (_entity_id(user_id), period.value)
        return (_entity_id(ident),)

    def render(self, kind: CacheKind, ident: Any = None) -> str:
        key = kind.template.format(*self._parts(kind, ident))
        return f"{self.prefix}{key}" if self.prefix else key
