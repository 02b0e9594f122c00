from __future__ import annotations

from .runtime.observability import configure_default_logging

__version__ = "0.1.0"

configure_default_logging()
