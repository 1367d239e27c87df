"""
QueryKit DB — facade and transport adapters.
"""

from .database import Database
from .transports import AsyncpgTransport, AiomysqlTransport

__all__ = ["Database", "AsyncpgTransport", "AiomysqlTransport"]
