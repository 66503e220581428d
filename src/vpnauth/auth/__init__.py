"""認可コアの公開API。"""

from __future__ import annotations

from vpnauth.auth.actions import Action, ActionAuthenticator
from vpnauth.auth.collaborators import (
    BrowserLauncher,
    CodeExchanger,
    ForegroundActivator,
    NullForegroundActivator,
    WebBrowserLauncher,
)
from vpnauth.auth.exchange import AuthorizationRequest, TokenEndpointClient
from vpnauth.auth.flow import AuthorizationFlowCoordinator
from vpnauth.auth.redirect import RedirectListener
from vpnauth.auth.state import AuthorizationState, FreshTokens, mask_secret
from vpnauth.auth.store import TokenStore, storage_path_for

__all__ = [
    "Action",
    "ActionAuthenticator",
    "AuthorizationFlowCoordinator",
    "AuthorizationRequest",
    "AuthorizationState",
    "BrowserLauncher",
    "CodeExchanger",
    "ForegroundActivator",
    "FreshTokens",
    "NullForegroundActivator",
    "RedirectListener",
    "TokenEndpointClient",
    "TokenStore",
    "WebBrowserLauncher",
    "mask_secret",
    "storage_path_for",
]
