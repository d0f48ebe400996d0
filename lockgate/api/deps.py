"""Shared API dependencies: settings, store, lockout service, credential verifier."""

from __future__ import annotations

from fastapi import Request

from lockgate.config import Settings
from lockgate.services.auth_service import CredentialVerifier
from lockgate.services.kv_store import KeyValueStore
from lockgate.services.lockout_service import LockoutService


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_kv_store(request: Request) -> KeyValueStore:
    """Get the shared key-value store from app state."""
    store: KeyValueStore = request.app.state.kv_store
    return store


def get_lockout_service(request: Request) -> LockoutService:
    """Get the lockout service from app state."""
    lockout: LockoutService = request.app.state.lockout_service
    return lockout


def get_credential_verifier(request: Request) -> CredentialVerifier:
    """Get the credential verifier from app state."""
    verifier: CredentialVerifier = request.app.state.credential_verifier
    return verifier
