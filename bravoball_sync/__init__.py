from .client import RemoteClient
from .coordinator import DomainResult, SyncCoordinator, SyncOutcome, SyncReport, build_coordinator
from .debounce import DebounceGate, DelayedCalls
from .errors import AuthRequiredError, BadResponseError, DebouncedError, NetworkError, SyncError
from .stores import SessionStore
from .tracker import ChangeEvent, ChangeTracker, Domain

__version__ = "0.3.0"

__all__ = [
    "AuthRequiredError",
    "BadResponseError",
    "ChangeEvent",
    "ChangeTracker",
    "DebounceGate",
    "DebouncedError",
    "DelayedCalls",
    "Domain",
    "DomainResult",
    "NetworkError",
    "RemoteClient",
    "SessionStore",
    "SyncCoordinator",
    "SyncError",
    "SyncOutcome",
    "SyncReport",
    "build_coordinator",
]
