"""
Converge Connections Module

Connection plugins for local and SSH targets.
"""

from converge.connections.base import (
    Connection,
    ConnectionFactory,
    RunResult,
    create_connection_factory,
)
from converge.connections.local import LocalConnection

__all__ = [
    'Connection',
    'ConnectionFactory',
    'RunResult',
    'LocalConnection',
    'create_connection_factory',
]
