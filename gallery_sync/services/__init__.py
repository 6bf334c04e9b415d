"""Collaborator adapters for gallery_sync."""
from .api_client import APIError, HTTPAPIClient
from .auth import CallbackAuthGate, StaticAuthGate
from .document_store import FirestoreDocumentStore, firestore_base_url
from .object_store import CloudinaryObjectStore
from .preview import PreviewService

__all__ = [
    "APIError",
    "HTTPAPIClient",
    "CallbackAuthGate",
    "StaticAuthGate",
    "FirestoreDocumentStore",
    "firestore_base_url",
    "CloudinaryObjectStore",
    "PreviewService",
]
