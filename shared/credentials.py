"""
Credential resolution for workflow nodes and poll triggers.

Stored credentials are Fernet tokens of a JSON object. Resolution checks that
the credential belongs to the requesting user and has not failed
verification before anything is decrypted.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from shared.config import config
from shared.database.models import Credential
from shared.logger import get_logger

logger = get_logger(__name__)


class CredentialError(Exception):
    """Base class for credential resolution failures."""

    def __init__(self, message: str, *, credential_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.credential_id = credential_id


class CredentialNotFoundError(CredentialError):
    """The credential handle does not exist."""


class CredentialForbiddenError(CredentialError):
    """The credential exists but belongs to another user."""


class CredentialNotVerifiedError(CredentialError):
    """The credential never passed (or later failed) verification."""


class CredentialDecryptionError(CredentialError):
    """The stored payload could not be decrypted or parsed."""


def _build_fernet(key: Optional[str]) -> Fernet:
    if not key:
        raise CredentialDecryptionError("CREDENTIAL_ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key.encode("utf-8") if isinstance(key, str) else key)
    except (TypeError, ValueError) as exc:
        raise CredentialDecryptionError(f"Invalid credential encryption key: {exc}") from exc


def encrypt_credential_data(data: Dict[str, Any], *, key: Optional[str] = None) -> str:
    """Encrypt a credential payload for storage in ``Credential.encrypted_data``."""
    fernet = _build_fernet(key or config.credential_encryption_key)
    body = json.dumps(data, separators=(",", ":"), sort_keys=True)
    return fernet.encrypt(body.encode("utf-8")).decode("utf-8")


def decrypt_credential_data(token: str, *, key: Optional[str] = None) -> Dict[str, Any]:
    """Decrypt a stored credential payload."""
    fernet = _build_fernet(key or config.credential_encryption_key)
    try:
        body = fernet.decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        raise CredentialDecryptionError("Credential payload could not be decrypted") from exc
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise CredentialDecryptionError("Credential payload is not valid JSON") from exc
    if not isinstance(data, dict):
        raise CredentialDecryptionError("Credential payload must be a JSON object")
    return data


class CredentialResolver:
    """Loads, authorizes and decrypts credentials by handle."""

    def __init__(self, *, encryption_key: Optional[str] = None) -> None:
        self.encryption_key = encryption_key

    async def resolve(self, credential_id: str, user_id: int) -> Dict[str, Any]:
        try:
            pk = int(str(credential_id).strip())
        except (TypeError, ValueError):
            raise CredentialNotFoundError("Credential not found", credential_id=credential_id) from None

        credential = await Credential.get_or_none(id=pk)
        if credential is None:
            raise CredentialNotFoundError("Credential not found", credential_id=credential_id)
        if credential.user_id != user_id:
            logger.warning(
                "Credential requested by a user that does not own it",
                extra={"app_id": credential.app_id},
            )
            raise CredentialForbiddenError("Forbidden", credential_id=credential_id)
        if credential.is_valid is False:
            raise CredentialNotVerifiedError("Credential is not verified", credential_id=credential_id)

        return decrypt_credential_data(credential.encrypted_data, key=self.encryption_key)


credential_resolver = CredentialResolver()


__all__ = [
    "CredentialDecryptionError",
    "CredentialError",
    "CredentialForbiddenError",
    "CredentialNotFoundError",
    "CredentialNotVerifiedError",
    "CredentialResolver",
    "credential_resolver",
    "decrypt_credential_data",
    "encrypt_credential_data",
]
