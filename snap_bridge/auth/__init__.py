from snap_bridge.auth.token_manager import AccessToken, AccessTokenManager, TokenState
from snap_bridge.auth.token_issuer import AccessTokenIssuer, generate_access_token

__all__ = [
    "AccessToken",
    "AccessTokenManager",
    "TokenState",
    "AccessTokenIssuer",
    "generate_access_token",
]
