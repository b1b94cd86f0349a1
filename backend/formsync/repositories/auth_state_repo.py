"""Auth State Repository - Pending OAuth authorizations (state -> PKCE verifier)

Entries live in a TTL collection so a handshake survives restarts and can
complete on any instance.
"""
from datetime import timedelta
from typing import Optional
from pymongo.collection import Collection

from .mongo_client import get_collection
from ..utils.logger import get_logger
from ..utils.time import utc_now

logger = get_logger(__name__)


class AuthStateRepository:
    """Short-lived, single-use store of PKCE verifiers keyed by state"""

    def __init__(self, collection: Optional[Collection] = None):
        self._states: Collection = collection if collection is not None else get_collection("auth_states")

    def put(self, state: str, verifier: str, ttl_seconds: int) -> None:
        """Remember a verifier until it is consumed or expires"""
        now = utc_now()
        self._states.insert_one({
            "_id": state,
            "state": state,
            "verifier": verifier,
            "created_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        })

    def consume(self, state: str) -> Optional[str]:
        """
        Remove and return the verifier for a state

        Returns None when the state is unknown, already used or expired. The
        TTL monitor runs about once a minute, so expiry is also checked here.
        """
        doc = self._states.find_one_and_delete({"state": state})
        if doc is None:
            return None
        if doc["expires_at"] <= utc_now():
            logger.info("Discarded expired authorization state")
            return None
        return doc["verifier"]
