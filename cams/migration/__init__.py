"""Bulk import of users, roles and applications."""
