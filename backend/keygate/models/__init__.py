# keygate/models/__init__.py
"""
Database models module initialization.
Exports all Tortoise ORM models for convenient imports.

Models exported:
- LicenseKey: Issued license key with owner, HWID binding and provenance
- KeyUser: Per-user aggregate (owned keys, HWID reset bookkeeping)
- AuditLog: Append-only record of lifecycle events
"""
from .license_key import LicenseKey
from .key_user import KeyUser
from .audit_log import AuditLog
