"""
Kova Server module.

Hosts the FastAPI application, the status hub that streams deployment
status to WebSocket clients, and the build worker.
"""

from .hub import StatusHub, Subscriber

__all__ = ["StatusHub", "Subscriber"]
