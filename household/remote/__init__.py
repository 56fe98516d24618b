"""
Remote budgeting service integration: client, credentials, mirrors, dispatcher.
"""

from .client import BudgetServiceClient
from .credentials import MASKED_TOKEN, CredentialRecord, CredentialStore, RemoteCredentials
from .dispatcher import DispatchResult, RemoteDispatcher, Split, SplitTransaction
from .mirror import MirrorResult, RemoteMirror, parse_category_groups
from .transactions import TransactionMirror, TransactionMirrorResult

__all__ = [
    "BudgetServiceClient",
    "CredentialStore",
    "CredentialRecord",
    "RemoteCredentials",
    "MASKED_TOKEN",
    "RemoteMirror",
    "MirrorResult",
    "parse_category_groups",
    "TransactionMirror",
    "TransactionMirrorResult",
    "RemoteDispatcher",
    "DispatchResult",
    "Split",
    "SplitTransaction",
]
