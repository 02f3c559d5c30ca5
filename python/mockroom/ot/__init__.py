"""
Operational transform module.

Provides revisioned text operations, the server-side document that
orders them, and the client-side reconciliation that keeps local copies
convergent with the server's history.
"""

from .operation import (
    Operation,
    transform,
)
from .document import Document
from .client import DocumentClient

__all__ = [
    # Operations
    "Operation",
    "transform",
    # Server document
    "Document",
    # Client reconciliation
    "DocumentClient",
]
