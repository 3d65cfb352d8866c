"""
Token Revocation System using Redis.

Invalidates JWT tokens immediately when an account is deactivated,
either manually or by the validity cascade.
"""

import logging
from typing import Iterable
from reseller_backend.app.core import redis_client as redis_module
from reseller_backend.app.core.config import settings

logger = logging.getLogger("reseller.auth")

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
ACCOUNT_TOKENS_PREFIX = "account:tokens:"


def _ttl_seconds() -> int:
    # Tokens auto-expire anyway, flags only need to outlive them
    return settings.access_token_expire_minutes * 60


async def revoke_token(token: str, account_id: int) -> bool:
    """
    Revoke a specific JWT token by adding it to the blacklist.
    
    Args:
        token: The JWT token string to revoke
        account_id: Account that owns the token
        
    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        await redis_module.redis_client.setex(key, _ttl_seconds(), str(account_id))
        return True
    except Exception as e:
        logger.warning("Error revoking token: %s", e)
        return False


async def is_token_revoked(token: str) -> bool:
    """
    Check if a token has been revoked.
    
    Args:
        token: JWT token string to check
        
    Returns:
        True if token is revoked, False otherwise
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        exists = await redis_module.redis_client.exists(key)
        return exists > 0
    except Exception as e:
        logger.warning("Error checking token revocation: %s", e)
        # Fail open: the account status check in get_current_user still applies
        return False


async def revoke_account_tokens(account_ids: Iterable[int]) -> int:
    """
    Revoke all active tokens for the given accounts.
    
    Called after a manual deactivation or a cascade so that subordinate
    sessions end immediately instead of at token expiry.
    
    Returns:
        Number of accounts flagged
    """
    flagged = 0
    for account_id in account_ids:
        try:
            key = f"{ACCOUNT_TOKENS_PREFIX}{account_id}:revoked"
            await redis_module.redis_client.setex(key, _ttl_seconds(), "1")
            flagged += 1
        except Exception as e:
            logger.warning("Error revoking tokens for account %s: %s", account_id, e)
    return flagged


async def are_account_tokens_revoked(account_id: int) -> bool:
    """
    Check if all tokens for an account have been revoked.
    """
    try:
        key = f"{ACCOUNT_TOKENS_PREFIX}{account_id}:revoked"
        exists = await redis_module.redis_client.exists(key)
        return exists > 0
    except Exception as e:
        logger.warning("Error checking account token revocation: %s", e)
        return False


async def clear_account_token_revocation(account_id: int) -> bool:
    """
    Clear the global token revocation flag for an account.
    
    Called when an account is manually reactivated.
    """
    try:
        key = f"{ACCOUNT_TOKENS_PREFIX}{account_id}:revoked"
        await redis_module.redis_client.delete(key)
        return True
    except Exception as e:
        logger.warning("Error clearing token revocation for account %s: %s", account_id, e)
        return False
