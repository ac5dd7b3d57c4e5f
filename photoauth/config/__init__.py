"""
Configuration Module for the Authorization Server
"""

from .server_config import (
    AuthServerConfig,
    ClientConfig,
    LoggingConfig,
    ServerConfig,
    StoreConfig,
    TokenConfig,
    configure_logging,
    get_development_config,
    get_server_config,
)

__all__ = [
    'AuthServerConfig',
    'ClientConfig',
    'LoggingConfig',
    'ServerConfig',
    'StoreConfig',
    'TokenConfig',
    'configure_logging',
    'get_development_config',
    'get_server_config',
]
