"""
Request dependencies shared by the protected routers.
"""

import logging

from fastapi import Request

from app.core.exceptions import AuthenticationError
from app.services.item_service import ItemService
from app.services.rate_limiter import RateLimiterService

logger = logging.getLogger(__name__)


async def authenticate_user(request: Request) -> str:
    """
    Verify the bearer token and store the user id on request.state.

    Runs before the rate limit guards so they can key on user:<id>.

    Raises:
        AuthenticationError: Missing header or token rejected by the verifier
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthenticationError("Missing or invalid authorization header")

    token = auth_header[len("Bearer "):].strip()
    try:
        user_id = await request.app.state.token_verifier.verify(token)
    except AuthenticationError:
        raise
    except Exception as e:
        logger.error(f"Authentication error: {e}", exc_info=True)
        raise AuthenticationError("Invalid authentication token") from e

    request.state.user_id = user_id
    return user_id


def get_rate_limiter(request: Request) -> RateLimiterService:
    return request.app.state.rate_limiter


def get_item_service(request: Request) -> ItemService:
    return request.app.state.item_service
