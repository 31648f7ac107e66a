"""
API route modules.

- system: Health and preview status
- snapshots: Snapshot worker registration and snapshot images
"""

from .system import setup_system_routes
from .snapshots import setup_snapshot_routes


def setup_all_routes(app, controller):
    """Register all API routes with the application."""
    setup_system_routes(app, controller)
    setup_snapshot_routes(app, controller)


__all__ = ["setup_all_routes", "setup_system_routes", "setup_snapshot_routes"]
