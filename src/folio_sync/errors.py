# src/folio_sync/errors.py

"""
Exception taxonomy for the background subsystem.

- ConfigurationError: static account secrets / config file unusable
- ProtocolError: login flow response did not have the expected shape
- AuthenticationError: provider rejected credentials, 2FA, or a token
- CredentialError: token acquisition gave up after the bounded retry cascade
- TransientStorageError: sqlite busy/locked (retried by storage helpers)
- TaskError: task body failure unrelated to authentication
"""

from __future__ import annotations


class FolioSyncError(Exception):
    """Base class for all errors raised by folio_sync."""


class ConfigurationError(FolioSyncError):
    pass


class ProtocolError(FolioSyncError):
    pass


class AuthenticationError(FolioSyncError):
    pass


class CredentialError(AuthenticationError):
    pass


class TransientStorageError(FolioSyncError):
    pass


class TaskError(FolioSyncError):
    pass
