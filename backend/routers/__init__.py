"""
API routers package.
Each router handles a specific domain of endpoints.
"""

from routers import attachments, auth, download, maintenance, notes, tags

__all__ = [
    "attachments",
    "auth",
    "download",
    "maintenance",
    "notes",
    "tags",
]
