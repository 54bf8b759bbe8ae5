"""
Partial updates for cached marketplace aggregates.

A patch model lists every optional column. Presence is taken from
``model_fields_set``: a field that was sent, even as ``null``, is
written; a field that was omitted is left alone. ``build_update`` is the
only place SQL for these updates is assembled.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from shared.errors import ValidationError
from shared.logging import get_logger

from .models import PricingModel, Theme


class Patch(BaseModel):
    """Base for partial updates."""

    model_config = ConfigDict(extra="forbid")

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly set, in declaration order."""
        return {name: getattr(self, name) for name in type(self).model_fields if name in self.model_fields_set}


class UserProfilePatch(Patch):
    display_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=500)
    phone_number: Optional[str] = Field(default=None, max_length=20)
    company: Optional[str] = Field(default=None, max_length=100)
    website: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=100)
    timezone: Optional[str] = Field(default=None, max_length=50)


class UserSettingsPatch(Patch):
    language: Optional[str] = Field(default=None, max_length=10)
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    marketing_emails: Optional[bool] = None
    api_usage_alerts: Optional[bool] = None
    security_alerts: Optional[bool] = None
    theme: Optional[Theme] = None
    date_format: Optional[str] = Field(default=None, max_length=20)
    currency: Optional[str] = Field(default=None, max_length=10)


class UserSecurityPatch(Patch):
    two_factor_enabled: Optional[bool] = None
    password_expiry_days: Optional[int] = Field(default=None, ge=0)
    login_notifications: Optional[bool] = None
    session_timeout: Optional[int] = Field(default=None, ge=1)
    allowed_ip_ranges: Optional[str] = None


class APIServicePatch(Patch):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    original_endpoint_url: Optional[str] = None
    is_active: Optional[bool] = None
    category: Optional[str] = None
    pricing_model: Optional[PricingModel] = None
    price_per_call: Optional[float] = Field(default=None, ge=0)
    price_per_token: Optional[float] = Field(default=None, ge=0)


# table -> (updatable columns, key columns allowed in WHERE)
TABLE_COLUMNS: Dict[str, Tuple[FrozenSet[str], FrozenSet[str]]] = {
    "user_profiles": (frozenset(UserProfilePatch.model_fields), frozenset({"user_id"})),
    "user_settings": (frozenset(UserSettingsPatch.model_fields), frozenset({"user_id"})),
    "user_security": (frozenset(UserSecurityPatch.model_fields), frozenset({"user_id"})),
    "api_services": (frozenset(APIServicePatch.model_fields), frozenset({"service_id", "seller_user_id"})),
}


def _param(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def build_update(table: str, patch: Patch, where: Mapping[str, Any]) -> Tuple[str, List[Any]]:
    """Build ``UPDATE`` SQL with ``$n`` placeholders and its parameter list.

    Columns are checked against a per-table whitelist; values never reach
    the SQL text.
    """
    if table not in TABLE_COLUMNS:
        raise ValidationError("Unknown table", {"table": table})
    columns, key_columns = TABLE_COLUMNS[table]

    changes = patch.changes()
    if not changes:
        raise ValidationError("Patch contains no fields", {"table": table})
    unknown = sorted(set(changes) - columns)
    if unknown:
        raise ValidationError("Patch contains non-updatable columns", {"table": table, "columns": unknown})
    if not where:
        raise ValidationError("Update requires a WHERE clause", {"table": table})

    params: List[Any] = []
    assignments = []
    for column, value in changes.items():
        params.append(_param(value))
        assignments.append(f"{column} = ${len(params)}")
    assignments.append("updated_at = NOW()")

    conditions = []
    for column, value in where.items():
        if column not in key_columns:
            raise ValidationError("Column not allowed in WHERE", {"table": table, "column": column})
        params.append(value)
        conditions.append(f"{column} = ${len(params)}")

    sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {' AND '.join(conditions)}"
    return sql, params


Executor = Callable[..., Awaitable[Any]]


class PatchWriter:
    """Applies patches through ``executor`` and invalidates the cache afterwards.

    ``executor`` is called as ``executor(sql, *params)``, the calling
    convention of an asyncpg connection's ``execute``.
    """

    def __init__(self, executor: Executor, cache_manager):
        self.executor = executor
        self.cache_manager = cache_manager
        self.logger = get_logger("admission.patch_writer")

    async def _apply(self, table: str, patch: Patch, where: Mapping[str, Any]) -> Any:
        sql, params = build_update(table, patch, where)
        result = await self.executor(sql, *params)
        self.logger.info("Applied patch", table=table, columns=list(patch.changes()))
        return result

    async def update_user_profile(self, user_id: int, patch: UserProfilePatch) -> Any:
        result = await self._apply("user_profiles", patch, {"user_id": user_id})
        await self.cache_manager.invalidate_user(user_id)
        return result

    async def update_user_settings(self, user_id: int, patch: UserSettingsPatch) -> Any:
        result = await self._apply("user_settings", patch, {"user_id": user_id})
        await self.cache_manager.invalidate_user(user_id)
        return result

    async def update_user_security(self, user_id: int, patch: UserSecurityPatch) -> Any:
        result = await self._apply("user_security", patch, {"user_id": user_id})
        await self.cache_manager.invalidate_user(user_id)
        return result

    async def update_api_service(self, service_id: int, seller_id: int, patch: APIServicePatch) -> Any:
        result = await self._apply(
            "api_services", patch, {"service_id": service_id, "seller_user_id": seller_id}
        )
        await self.cache_manager.invalidate_api_service(service_id, seller_id)
        return result
