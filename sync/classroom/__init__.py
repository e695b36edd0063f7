"""
Google Classroom integration components
"""
from .auth import ExternalCredential, refresh
from .client import ClassroomClient
from .models import Course, CourseWork

__all__ = [
    'ExternalCredential',
    'refresh',
    'ClassroomClient',
    'Course',
    'CourseWork',
]
