from .formulas import compute_metrics
from .validation import validate_field, validate_record
from .analytics_service import aggregate
from .retry import RetryExecutor, with_retry
from .sync_service import StyleSynchronizer
from .style_service import StyleService
from .import_service import ImportService
from . import export_service

__all__ = [
    "compute_metrics",
    "validate_field",
    "validate_record",
    "aggregate",
    "RetryExecutor",
    "with_retry",
    "StyleSynchronizer",
    "StyleService",
    "ImportService",
    "export_service",
]
