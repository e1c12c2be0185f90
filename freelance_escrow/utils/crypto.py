"""Ed25519 request signing for API callers, using PyNaCl."""

import hashlib
import secrets
from datetime import UTC, datetime

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

AUTH_SCHEME = "UserSig"


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 keypair. Returns (private_key_hex, public_key_hex)."""
    signing_key = SigningKey.generate()
    private_hex = signing_key.encode(encoder=HexEncoder).decode()
    public_hex = signing_key.verify_key.encode(encoder=HexEncoder).decode()
    return private_hex, public_hex


def canonical_request(
    timestamp: str,
    nonce: str,
    method: str,
    path: str,
    body: bytes,
) -> bytes:
    """timestamp\\nnonce\\nMETHOD\\npath\\nsha256(body) as UTF-8 bytes."""
    body_hash = hashlib.sha256(body).hexdigest()
    return f"{timestamp}\n{nonce}\n{method.upper()}\n{path}\n{body_hash}".encode()


def sign_request(
    private_key_hex: str,
    timestamp: str,
    nonce: str,
    method: str,
    path: str,
    body: bytes = b"",
) -> str:
    signing_key = SigningKey(private_key_hex.encode(), encoder=HexEncoder)
    signed = signing_key.sign(
        canonical_request(timestamp, nonce, method, path, body), encoder=HexEncoder
    )
    return signed.signature.decode()


def verify_request_signature(
    public_key_hex: str,
    signature_hex: str,
    timestamp: str,
    nonce: str,
    method: str,
    path: str,
    body: bytes,
) -> bool:
    """True if the signature matches, False for any bad key, encoding or signature."""
    try:
        verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        verify_key.verify(
            canonical_request(timestamp, nonce, method, path, body),
            HexEncoder.decode(signature_hex.encode()),
        )
    except (BadSignatureError, ValueError, TypeError):
        return False
    return True


def authorization_header(user_id: str, signature_hex: str) -> str:
    return f"{AUTH_SCHEME} {user_id}:{signature_hex}"


def generate_nonce() -> str:
    return secrets.token_hex(16)


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


def is_timestamp_fresh(timestamp: str, max_age_seconds: int = 30) -> bool:
    """Timezone-aware ISO-8601 within ``max_age_seconds`` of now, either direction."""
    try:
        ts = datetime.fromisoformat(timestamp)
    except (ValueError, TypeError):
        return False
    if ts.tzinfo is None:
        return False
    return abs((datetime.now(UTC) - ts).total_seconds()) <= max_age_seconds
