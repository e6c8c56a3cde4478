"""CAMS -- Connection/Application Management System.

Flask backend for managing applications, their database/API connections,
scheduled connection tests, users, roles and persisted audit/security/
system/performance logs.
"""

__version__ = "1.0.0"
