"""
sync module - Mirrors linked Google Classroom accounts into the local store
"""
from .writer import sync_all

__all__ = ['sync_all']
