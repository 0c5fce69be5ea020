"""Gateway: application wiring and the HTTP/WebSocket surface.

Components:
- app.py: ConversationAnalyzerApp (builds the pipeline, startup/shutdown)
- http_handler.py: FastAPI app (webhooks, /ws, /api, probes)
"""

from .app import AdapterNotEnabledError, ConversationAnalyzerApp, build_adapters
from .http_handler import create_app

__all__ = ["AdapterNotEnabledError", "ConversationAnalyzerApp", "build_adapters", "create_app"]
