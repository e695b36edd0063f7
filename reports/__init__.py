"""
reports module - Weekly progress reports for linked student/teacher pairs
"""
from .generator import generate_all

__all__ = ['generate_all']
