"""
HTTP API over the record store.
"""

from .api import create_app
from .auth import AuthKey, AuthManager, FileKeyStore

__all__ = [
    "create_app",
    "AuthManager",
    "AuthKey",
    "FileKeyStore",
]
