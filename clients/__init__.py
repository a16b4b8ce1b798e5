# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_square_config,
)
from clients.document_store import (
    DocumentStore,
    StoredDocument,
    BatchUpdate,
    BatchResult,
    StoreError,
    DocumentNotFoundError,
    DocumentConflictError,
    StoreUnavailableError,
)
from clients.memory_store import InMemoryDocumentStore
from clients.postgres_store import PostgresDocumentStore
from clients.square_client import SquareClient, SquareClientError, PaymentLink
