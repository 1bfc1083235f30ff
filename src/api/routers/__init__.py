"""
API Routers package.
"""

from . import queries, schema

__all__ = ["queries", "schema"]
