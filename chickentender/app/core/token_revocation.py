"""
Token Revocation System using Redis.

Invalidates every JWT of a user immediately when an administrator
disables the account, instead of waiting for token expiry.
"""

import logging

from chickentender.app.core.redis_client import get_redis
from chickentender.app.core.config import settings

logger = logging.getLogger(__name__)

USER_TOKENS_PREFIX = "user:tokens:"


def _user_revocation_key(user_id: int) -> str:
    return f"{USER_TOKENS_PREFIX}{user_id}:revoked"


async def revoke_all_user_tokens(user_id: int) -> bool:
    """
    Revoke all active tokens for a specific user.

    Called when a user is disabled. Any token validation checks this flag,
    which lives as long as the longest possible token.

    Args:
        user_id: User ID whose tokens should be revoked

    Returns:
        True if successful
    """
    try:
        redis = await get_redis()
        ttl_seconds = settings.access_token_expire_minutes * 60
        await redis.setex(_user_revocation_key(user_id), ttl_seconds, "1")
        return True
    except Exception as e:
        logger.error("Error revoking all tokens for user %s: %s", user_id, e)
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """
    Check if all tokens for a user have been revoked.

    Args:
        user_id: User ID to check

    Returns:
        True if all user tokens are revoked, False otherwise
    """
    try:
        redis = await get_redis()
        return await redis.exists(_user_revocation_key(user_id)) > 0
    except Exception as e:
        # Fail open: the enabled flag on the user row is still checked
        logger.error("Error checking user token revocation: %s", e)
        return False


async def clear_user_token_revocation(user_id: int) -> bool:
    """
    Clear the revocation flag for a user that has been re-enabled.

    Args:
        user_id: User ID to clear revocation for

    Returns:
        True if successful
    """
    try:
        redis = await get_redis()
        await redis.delete(_user_revocation_key(user_id))
        return True
    except Exception as e:
        logger.error("Error clearing token revocation for user %s: %s", user_id, e)
        return False
