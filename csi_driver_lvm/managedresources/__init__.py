"""Managed resource module.

This module provides the synchronizer that applies a set of objects as one
named bundle and the clients that talk to the orchestration API.
"""

from .client import ManagedResource, ManagedResourceClient
from .in_memory import InMemoryClient
from .registry import Registry
from .status import Condition, Status, StatusInfo
from .synchronizer import ManagedResourceSynchronizer

__all__ = [
    "ManagedResource",
    "ManagedResourceClient",
    "ManagedResourceSynchronizer",
    "InMemoryClient",
    "Registry",
    "Condition",
    "Status",
    "StatusInfo",
]
