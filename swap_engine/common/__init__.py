from .async_utils import guarded_call, with_timeout
from .logging import log_event

__all__ = [
    "guarded_call",
    "log_event",
    "with_timeout",
]
