"""Backend adapters - one per remote transport.

- **RestBackend**: bespoke token-authenticated REST API
- **PostgrestBackend**: PostgREST-style managed database

Both implement ``BackendAdapter`` and expose ``saved`` / ``progress``
collections implementing ``RemoteCollection``.
"""

from readsync.client.backends.base import (
    BackendAdapter,
    RemoteCollection,
    collection_for,
    decode_rows,
    translate_errors,
)
from readsync.client.backends.postgrest import PostgrestBackend, PostgrestCollection
from readsync.client.backends.rest import RestBackend, RestCollection

__all__ = [
    "BackendAdapter",
    "PostgrestBackend",
    "PostgrestCollection",
    "RemoteCollection",
    "RestBackend",
    "RestCollection",
    "collection_for",
    "decode_rows",
    "translate_errors",
]
