"""
Marketplace OAuth token lifecycle and connection health service.

Stores partner refresh tokens encrypted at rest, refreshes expired access
tokens, migrates the legacy token encoding and exposes an admin-only
connection health check.
"""

__version__ = "0.1.0"
