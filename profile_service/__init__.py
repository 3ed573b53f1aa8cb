"""
Cached, role-aware profile retrieval for users, agents and admins.
"""

__version__ = "0.1.0"
