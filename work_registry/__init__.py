"""
Work Registry

Catalog sync and delivery for ordinally-identified agent works.
"""

import importlib.metadata

__version__ = importlib.metadata.version("work-registry")

from .delivery import AgentNotFoundError, WorkDeliveryService
from .pagination import Cursor, InvalidCursorError, decode_cursor, encode_cursor
from .reconcile import ReconcileError, ReconcileSummary, Reconciler, parse_ordinal
from .signing import CredentialIssuer, HmacCredentialIssuer, SigningError
from .storage import ObjectSource, ObjectSourceError, StoredObject
from .url_cache import SignedUrlCache

__all__ = [
    "AgentNotFoundError",
    "CredentialIssuer",
    "Cursor",
    "HmacCredentialIssuer",
    "InvalidCursorError",
    "ObjectSource",
    "ObjectSourceError",
    "ReconcileError",
    "ReconcileSummary",
    "Reconciler",
    "SignedUrlCache",
    "SigningError",
    "StoredObject",
    "WorkDeliveryService",
    "decode_cursor",
    "encode_cursor",
    "parse_ordinal",
]
