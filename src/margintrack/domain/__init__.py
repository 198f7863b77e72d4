from .models import (
    Customer,
    StyleRecord,
    DerivedMetrics,
    PortfolioMetrics,
    MarginBrackets,
    MarginStatus,
    SaveStatus,
    PushAction,
    PushEvent,
    Notice,
)
from .errors import (
    ValidationError,
    ConfigError,
    StoreError,
    TransientStoreError,
    RateLimitError,
    TerminalStoreError,
    NotFoundError,
)

__all__ = [
    "Customer",
    "StyleRecord",
    "DerivedMetrics",
    "PortfolioMetrics",
    "MarginBrackets",
    "MarginStatus",
    "SaveStatus",
    "PushAction",
    "PushEvent",
    "Notice",
    "ValidationError",
    "ConfigError",
    "StoreError",
    "TransientStoreError",
    "RateLimitError",
    "TerminalStoreError",
    "NotFoundError",
]
