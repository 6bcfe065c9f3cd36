# keygate/core/__init__.py
"""
Core application modules.
Contains essential infrastructure components:
- db: Tortoise ORM configuration and connection management
- security: Key token generation and shared-secret comparison
"""
