"""
duewatch: mirror LMS assignments locally and remind before deadlines.
"""

__version__ = "0.1.0"
