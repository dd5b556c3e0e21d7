"""
Cost Manager - Source Package

Client-side persistence for personal cost items: a versioned,
transactional object store with CRUD access, predicate scans and
monthly reports on top.

DESIGN PRINCIPLES:
1. One explicit connection, threaded through every call
2. One transaction per logical operation
3. Fail fast, never retry silently
4. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "Cost Manager Team"
