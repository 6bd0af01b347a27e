"""
Adapter pattern implementations for the job document store.

This module provides the abstract JobStore interface and concrete
implementations for in-memory (development, tests) and Postgres storage.
"""

from .base import JobStore, UPDATABLE_FIELDS
from .memory_adapter import InMemoryJobStore
from .postgres_adapter import PostgresJobStore

__all__ = [
    'JobStore',
    'UPDATABLE_FIELDS',
    'InMemoryJobStore',
    'PostgresJobStore'
]
