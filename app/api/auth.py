"""
Authentication Endpoint

POST /api/auth/verify lets the browser client check a token before it
starts calling the protected routes. Attempts are limited per address by
the auth action (5 per 5 minutes).
"""

from fastapi import APIRouter, Depends, Request

from app.api.deps import authenticate_user
from app.middleware.rate_limit import auth_rate_limit

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/verify", dependencies=[Depends(auth_rate_limit)])
async def verify_token(request: Request) -> dict:
    user_id = await authenticate_user(request)
    return {"success": True, "data": {"userId": user_id}}
