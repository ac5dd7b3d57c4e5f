"""
OAuth 2.0 Authorization Module

This module provides the authorization engine with:
- Authorization code grant, with and without PKCE
- Implicit and resource owner password grants
- Refresh token rotation with replay detection
- Handle-based and self-contained bearer tokens
"""

from .authorization_server import AuthorizationServer, TokenEndpointResponse, build_authorization_server
from .client_authenticator import ClientAuthenticator, ClientContext
from .client_registry import Client, ClientRegistry, InMemoryClientRegistry, build_client
from .code_generator import CodeGenerator
from .errors import OAuth2Error, EntropySourceUnavailable
from .grant_engine import AuthorizationRequest, AuthorizationResult, GrantEngine
from .models import AccessToken, AuthorizationGrant, Principal, RefreshToken, TokenResponse
from .pkce_verifier import PKCEVerifier, PKCEChallenge
from .token_store import InMemoryTokenStore, TokenStore
from .token_validator import TokenValidator
from .transactions import InMemoryTransactionStore, TransactionState

__all__ = [
    'AuthorizationServer',
    'TokenEndpointResponse',
    'build_authorization_server',
    'ClientAuthenticator',
    'ClientContext',
    'Client',
    'ClientRegistry',
    'InMemoryClientRegistry',
    'build_client',
    'CodeGenerator',
    'OAuth2Error',
    'EntropySourceUnavailable',
    'AuthorizationRequest',
    'AuthorizationResult',
    'GrantEngine',
    'AccessToken',
    'AuthorizationGrant',
    'Principal',
    'RefreshToken',
    'TokenResponse',
    'PKCEVerifier',
    'PKCEChallenge',
    'InMemoryTokenStore',
    'TokenStore',
    'TokenValidator',
    'InMemoryTransactionStore',
    'TransactionState',
]
