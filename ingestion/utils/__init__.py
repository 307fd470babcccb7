"""
Utility modules for the sync pipeline
"""
from utils.errors import (
    SyncError,
    ConfigError,
    InvalidArgument,
    TransportError,
    RateLimited,
    ParseError,
    RunCancelled,
)

__all__ = [
    'SyncError',
    'ConfigError',
    'InvalidArgument',
    'TransportError',
    'RateLimited',
    'ParseError',
    'RunCancelled',
]
