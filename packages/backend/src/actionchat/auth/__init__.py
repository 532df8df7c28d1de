"""Authentication and authorization.

Two authentication paths:
1. Users → email/password → JWT access/refresh tokens
2. Programmatic callers → ``ac_`` API key in Authorization or X-API-Key

Both resolve to a "current identity". Authorization is org-scoped: the
identity is paired with an organization and a role-derived capability set
before any handler touches the store (see permissions.py).
"""
