"""File-backed persistence for projects, sessions and rules documents."""

from .base import BaseStorageService, generate_id
from .projects import DEFAULT_VERSION, ProjectStorage
from .results import StorageError, StorageResult
from .rules import RulesDocument, RulesDocumentService
from .sessions import SessionStorage

__all__ = [
    "BaseStorageService",
    "DEFAULT_VERSION",
    "ProjectStorage",
    "RulesDocument",
    "RulesDocumentService",
    "SessionStorage",
    "StorageError",
    "StorageResult",
    "generate_id",
]
