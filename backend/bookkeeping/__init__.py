"""
Bookkeeping API server: lifecycle orchestration and scheduled database backups
"""

__version__ = "1.0.0"
