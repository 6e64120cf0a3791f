"""WebAuthn-style assertion verification for fingerprint authenticators.

Verification failure is a normal outcome: every check returns ``False``
instead of raising.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_der_public_key

from ..core.constants import (
    CHALLENGE_BYTES,
    CREDENTIAL_ID_MAX_BYTES,
    CREDENTIAL_ID_MIN_BYTES,
    WEBAUTHN_GET_TYPE,
)

logger = logging.getLogger(__name__)

# rpIdHash (32) + flags (1) + signCount (4)
_AUTH_DATA_MIN_LENGTH = 37
_SIGN_COUNT_OFFSET = 33


@dataclass(frozen=True)
class FingerprintAssertion:
    """Client-supplied assertion; every field is base64 (or base64url)."""

    credential_id: str
    authenticator_data: str
    client_data_json: str
    signature: str

    @classmethod
    def from_dict(cls, data: dict) -> "FingerprintAssertion":
        return cls(
            credential_id=str(data.get("credentialId") or ""),
            authenticator_data=str(data.get("authenticatorData") or ""),
            client_data_json=str(data.get("clientDataJSON") or ""),
            signature=str(data.get("signature") or ""),
        )


def b64decode(value: str) -> bytes:
    """Decode standard or URL-safe base64, padding optional."""
    value = value.strip().replace("-", "+").replace("_", "/")
    value += "=" * (-len(value) % 4)
    return base64.b64decode(value, validate=True)


def generate_challenge() -> str:
    return base64.b64encode(secrets.token_bytes(CHALLENGE_BYTES)).decode("ascii")


def is_valid_credential_id(credential_id: str) -> bool:
    if not credential_id:
        return False
    try:
        raw = b64decode(credential_id)
    except (binascii.Error, ValueError):
        return False
    return CREDENTIAL_ID_MIN_BYTES <= len(raw) <= CREDENTIAL_ID_MAX_BYTES


def hash_credential_id(credential_id: str) -> str:
    """SHA-256 hex of a credential id, used as storage key and in logs."""
    return hashlib.sha256(credential_id.encode("utf-8")).hexdigest()


def sign_count(authenticator_data: str) -> Optional[int]:
    """Authenticator-reported signature counter, or None if unreadable."""
    try:
        raw = b64decode(authenticator_data)
    except (binascii.Error, ValueError):
        return None
    if len(raw) < _AUTH_DATA_MIN_LENGTH:
        return None
    return int.from_bytes(raw[_SIGN_COUNT_OFFSET:_AUTH_DATA_MIN_LENGTH], "big")


def verify_assertion(
    assertion: FingerprintAssertion,
    stored_public_key: str,
    expected_challenge: Optional[str] = None,
) -> bool:
    """Check type tag, optional challenge and the P-256 signature.

    Signed bytes are ``authenticatorData || SHA-256(clientDataJSON)``.
    ``stored_public_key`` is a base64 DER SubjectPublicKeyInfo.
    """
    key_ref = hash_credential_id(assertion.credential_id)[:12]
    try:
        client_data_raw = b64decode(assertion.client_data_json)
        client_data = json.loads(client_data_raw.decode("utf-8"))
        if not isinstance(client_data, dict):
            logger.warning("Client data is not an object (credential %s)", key_ref)
            return False

        if expected_challenge is not None and client_data.get("challenge") != expected_challenge:
            logger.warning("Challenge mismatch (credential %s)", key_ref)
            return False

        if client_data.get("type") != WEBAUTHN_GET_TYPE:
            logger.warning("Invalid client data type %r (credential %s)", client_data.get("type"), key_ref)
            return False

        auth_data = b64decode(assertion.authenticator_data)
        signed_data = auth_data + hashlib.sha256(client_data_raw).digest()
        signature = b64decode(assertion.signature)

        public_key = load_der_public_key(b64decode(stored_public_key))
        if not isinstance(public_key, ec.EllipticCurvePublicKey) or not isinstance(public_key.curve, ec.SECP256R1):
            logger.warning("Stored key is not a P-256 key (credential %s)", key_ref)
            return False

        public_key.verify(signature, signed_data, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        logger.warning("Fingerprint signature invalid (credential %s)", key_ref)
        return False
    except (binascii.Error, ValueError, TypeError, UnicodeDecodeError, UnsupportedAlgorithm) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning("Fingerprint assertion could not be decoded (credential %s): %s", key_ref, e)
        return False
