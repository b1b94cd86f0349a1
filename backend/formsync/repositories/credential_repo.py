"""Credential Repository - Data access for delegated Airtable credentials

Access and refresh tokens are encrypted before they reach MongoDB and
decrypted on load; callers only ever see plaintext tokens.
"""
from typing import Any, Dict, Optional
from pymongo.collection import Collection
from pymongo import ReturnDocument

from .mongo_client import get_collection
from ..domain.models import Credential
from ..domain.errors import CredentialNotFoundError
from ..utils.crypto import TokenCipher, get_token_cipher
from ..utils.logger import get_logger

logger = get_logger(__name__)

ENCRYPTED_FIELDS = ("access_token", "refresh_token")


class CredentialRepository:
    """Repository for credential operations (one document per account)"""

    def __init__(self, collection: Optional[Collection] = None, cipher: Optional[TokenCipher] = None):
        self._credentials: Collection = collection if collection is not None else get_collection("credentials")
        self._cipher = cipher or get_token_cipher()

    def _encrypt(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        encrypted = dict(fields)
        for name in ENCRYPTED_FIELDS:
            if name in encrypted:
                encrypted[name] = self._cipher.encrypt(encrypted[name])
        return encrypted

    def _to_model(self, doc: Dict[str, Any]) -> Credential:
        doc.pop("_id", None)
        account_id = doc.get("account_id", "")
        for name in ENCRYPTED_FIELDS:
            doc[name] = self._cipher.decrypt(doc.get(name), account_id)
        return Credential.model_validate(doc)

    def get_credential(self, account_id: str) -> Optional[Credential]:
        """Get credential by account ID"""
        doc = self._credentials.find_one({"account_id": account_id})
        if doc:
            return self._to_model(doc)
        return None

    def get_credential_or_raise(self, account_id: str) -> Credential:
        """Get credential or raise error"""
        credential = self.get_credential(account_id)
        if not credential:
            raise CredentialNotFoundError(f"No credential for account {account_id}")
        return credential

    def save_credential(self, credential: Credential) -> Credential:
        """Insert or replace the credential for its account"""
        doc = self._encrypt(credential.model_dump())
        doc["_id"] = credential.account_id

        self._credentials.replace_one({"account_id": credential.account_id}, doc, upsert=True)
        logger.info(
            f"Saved credential for account {credential.account_id}",
            extra={"account_id": credential.account_id}
        )
        return credential

    def update_credential(self, account_id: str, updates: Dict[str, Any]) -> Credential:
        """Update selected credential fields"""
        result = self._credentials.find_one_and_update(
            {"account_id": account_id},
            {"$set": self._encrypt(updates)},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            raise CredentialNotFoundError(f"No credential for account {account_id}")

        return self._to_model(result)
