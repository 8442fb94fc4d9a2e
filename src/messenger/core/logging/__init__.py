# src/messenger/core/logging/
# ├─ __init__.py            # public API
# ├─ builder.py             # make_dict_config(settings) + setup_logging(settings)
# ├─ formatters.py          # JsonFormatter, ColorFormatter
# ├─ filters.py             # CorrelationIdFilter, RedactFilter (+ contextvar helpers)
# ├─ handlers.py            # handler factories (console/file)
# └─ middleware.py          # FastAPI/Starlette middleware to set the correlation id

from .builder import setup_logging, make_dict_config, stop_queue_logging
from .filters import set_correlation_id, reset_correlation_id, get_correlation_id, CorrelationIdFilter
from .middleware import CorrelationIdMiddleware

__all__ = [
    "setup_logging",
    "make_dict_config",
    "stop_queue_logging",
    "set_correlation_id",
    "reset_correlation_id",
    "get_correlation_id",
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
]
