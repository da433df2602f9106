from .cache import OnceCache
from .logging_config import configure_logging
from .text import estimate_token_count, sanitize

__all__ = [
    "OnceCache",
    "configure_logging",
    "estimate_token_count",
    "sanitize",
]
