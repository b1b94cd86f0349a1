"""PKCE helpers for the OAuth authorization-code flow"""
import base64
import hashlib
import secrets
from typing import NamedTuple


class PkcePair(NamedTuple):
    verifier: str
    challenge: str
    method: str


def base64url_encode(raw: bytes) -> str:
    """Base64 URL encode without padding"""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_pkce() -> PkcePair:
    """Generate a code verifier and its S256 challenge"""
    verifier = base64url_encode(secrets.token_bytes(32))
    challenge = base64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())
    return PkcePair(verifier=verifier, challenge=challenge, method="S256")


def generate_state() -> str:
    """Random state parameter for the authorize redirect"""
    return base64url_encode(secrets.token_bytes(32))
