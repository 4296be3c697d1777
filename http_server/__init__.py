"""
Minimal asyncio HTTP/1.1 server used to expose the store over the network.
"""

from .request import Request
from .response import Response, response
from .server import HTTPServer

__all__ = ["HTTPServer", "Request", "Response", "response"]
