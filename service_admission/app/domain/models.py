"""
Marketplace entity models held in the read-through cache.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PricingModel(str, Enum):
    """How a seller charges for a service."""
    PER_CALL = "per_call"
    PER_TOKEN = "per_token"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class UsagePeriod(str, Enum):
    """Aggregation periods for buyer usage statistics."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class UserProfile(BaseModel):
    """Extended profile of a marketplace user."""
    profile_id: int
    user_id: int
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    phone_number: Optional[str] = None
    company: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    timezone: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserSettings(BaseModel):
    """Notification and display preferences."""
    settings_id: int
    user_id: int
    language: str = "zh-CN"
    email_notifications: bool = True
    sms_notifications: bool = False
    marketing_emails: bool = False
    api_usage_alerts: bool = True
    security_alerts: bool = True
    theme: Theme = Theme.AUTO
    date_format: str = "YYYY-MM-DD"
    currency: str = "USD"
    created_at: datetime
    updated_at: datetime


class UserSecurity(BaseModel):
    """Security settings; secrets are never part of the cached shape."""
    security_id: int
    user_id: int
    two_factor_enabled: bool = False
    last_password_change: Optional[datetime] = None
    password_expiry_days: int = 0
    login_notifications: bool = True
    session_timeout: int = 30
    allowed_ip_ranges: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class APIService(BaseModel):
    """An upstream API registered by a seller."""
    service_id: int
    seller_user_id: int
    name: str
    description: Optional[str] = None
    original_endpoint_url: str
    platform_proxy_prefix: str
    is_active: bool = True
    category: Optional[str] = None
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = 0
    price_per_call: float = 0.0
    pricing_model: PricingModel = PricingModel.PER_CALL
    price_per_token: float = 0.0
    total_calls: int = 0
    subscriber_count: int = 0
    features: List[str] = Field(default_factory=list)
    documentation: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Subscription(BaseModel):
    """A buyer's platform key for one service."""
    key_id: int
    buyer_user_id: int
    service_id: int
    service_name: str
    platform_api_key: str
    is_active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime


class APICallDetail(BaseModel):
    api_service_id: int
    api_service_name: str
    calls: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class UsageSummary(BaseModel):
    """Buyer usage aggregated over one period."""
    calls_made: int = 0
    total_tokens: int = 0
    indicative_cost: float = 0.0
    usage_details_by_api: List[APICallDetail] = Field(default_factory=list)
    period: UsagePeriod


class APIDocumentation(BaseModel):
    doc_id: int
    service_id: int
    title: str
    description: Optional[str] = None
    content: str
    version: str = "1.0.0"
    is_published: bool = False
    created_at: datetime
    updated_at: datetime
