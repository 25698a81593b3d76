from .errors import DuplicateWalletError, StoreUnavailableError
from .gateway import StorageGateway
from .helpers import read_wallets_file
from .memory import InMemoryJobStore
from .settings import StorageSettings

__all__ = [
    "DuplicateWalletError",
    "InMemoryJobStore",
    "StorageGateway",
    "StorageSettings",
    "StoreUnavailableError",
    "read_wallets_file",
]
