from __future__ import annotations

from .http import HttpModelProvider
from .lmstudio import LmStudioModelProvider
from .ollama import OllamaModelProvider

__all__ = ["HttpModelProvider", "LmStudioModelProvider", "OllamaModelProvider"]
