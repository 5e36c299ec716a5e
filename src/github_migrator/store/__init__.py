"""Mapping store implementations."""

from .base import MappingNotFoundError, MappingStore, StoreError
from .memory import InMemoryMappingStore
from .json_store import JSONFileMappingStore

__all__ = [
    'MappingNotFoundError',
    'MappingStore',
    'StoreError',
    'InMemoryMappingStore',
    'JSONFileMappingStore',
]
