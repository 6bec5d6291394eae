"""
Common utilities for refstate.

Modules:
- cipher: Fernet-backed symmetric cipher for client-path tokens
- errors: error taxonomy shared by the manager, client and server
- ids: reference-id generator (hex, alphanumeric, URL-safe base64)
- page_state: URL/persistence-slot adapter for the current token
- ref_client: HTTP client for the reference-state server endpoint
"""

__all__ = [
    "cipher",
    "errors",
    "ids",
    "page_state",
    "ref_client",
]
