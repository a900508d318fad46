from .logging import mask_secret, sanitize_for_log

__all__ = [
    "mask_secret",
    "sanitize_for_log",
]
