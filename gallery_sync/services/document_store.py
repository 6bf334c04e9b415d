"""
Document Store - persists the ordered photo list in a Firestore document.

Uses the Firestore REST API through HTTPAPIClient. Writes use an update
mask so the rest of the document (name, address, ...) is left untouched.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

import httpx

from ..errors import PersistError
from ..protocols import IAPIClient
from .api_client import APIError

logger = logging.getLogger(__name__)

FIRESTORE_API_URL = "https://firestore.googleapis.com/v1"
DEFAULT_DOCUMENT = "gym_profile/main_gym_profile"
DEFAULT_FIELD = "photos"


def firestore_base_url(project_id: str, database: str = "(default)") -> str:
    return f"{FIRESTORE_API_URL}/projects/{project_id}/databases/{database}/documents/"


def encode_string_array(values: List[str]) -> Dict[str, Any]:
    """Encode a list of strings as a Firestore arrayValue."""
    if not values:
        return {"arrayValue": {}}
    return {"arrayValue": {"values": [{"stringValue": v} for v in values]}}


def decode_string_array(value: Optional[Dict[str, Any]]) -> List[str]:
    """Decode a Firestore arrayValue of strings. Non-string entries are skipped."""
    if not value:
        return []
    values = value.get("arrayValue", {}).get("values", [])
    return [v["stringValue"] for v in values if "stringValue" in v]


class FirestoreDocumentStore:
    """
    Gallery persistence on one Firestore document field.

    Implements IDocumentStore protocol.
    """

    def __init__(
        self,
        api_client: IAPIClient,
        document: str = DEFAULT_DOCUMENT,
        field: str = DEFAULT_FIELD,
        api_key: Optional[str] = None
    ):
        """
        Initialize document store.

        Args:
            api_client: HTTP client whose base URL is the Firestore documents root
            document: Document path, "collection/document"
            field: Array field holding the ordered URLs
            api_key: Optional web API key sent as the `key` query parameter
        """
        self._api = api_client
        self._document = document.strip("/")
        self._field = field
        self._api_key = api_key

    @property
    def document(self) -> str:
        return self._document

    def _params(self, *extra: Tuple[str, str]) -> List[Tuple[str, str]]:
        params = list(extra)
        if self._api_key:
            params.append(("key", self._api_key))
        return params

    async def load(self) -> List[str]:
        """Read the photo list. A missing document is an empty gallery."""
        try:
            response = await self._api.get(self._document, params=self._params())
        except APIError as exc:
            if exc.status_code == 404:
                logger.info(f"Document {self._document} does not exist yet, starting empty")
                return []
            raise

        fields = response.json().get("fields", {})
        return decode_string_array(fields.get(self._field))

    async def persist(self, urls: List[str]) -> None:
        """Replace the photo list, stamping updatedAt."""
        body = {
            "fields": {
                self._field: encode_string_array(list(urls)),
                "updatedAt": {"timestampValue": datetime.now(timezone.utc).isoformat()},
            }
        }
        params = self._params(
            ("updateMask.fieldPaths", self._field),
            ("updateMask.fieldPaths", "updatedAt"),
        )
        try:
            await self._api.patch(self._document, json=body, params=params)
        except (APIError, httpx.HTTPError) as exc:
            raise PersistError(f"Failed to save {self._document}: {exc}") from exc
        logger.debug(f"Persisted {len(urls)} url(s) to {self._document}.{self._field}")
