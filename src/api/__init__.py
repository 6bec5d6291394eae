"""
Server endpoint for reference states: an in-process service over a store and
an API Gateway / Lambda request handler that delegates to it.
"""

from .service import ReferenceService, ServerOptions

__all__ = ["ReferenceService", "ServerOptions"]
