"""Storage for pending OAuth flows and issued credentials."""

from .state_store import (
    CallbackMethod,
    FlowStateData,
    PendingFlowState,
    StateStore,
    StateStoreStats,
)
from .token_store import CredentialVault, FileCredentialVault, StoredCredential

__all__ = [
    "CallbackMethod",
    "FlowStateData",
    "PendingFlowState",
    "StateStore",
    "StateStoreStats",
    "CredentialVault",
    "FileCredentialVault",
    "StoredCredential",
]
