"""
API dependencies for Registrations Service.
Handles authentication, authorization, and common dependencies.
"""

from typing import Dict, Any
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import text
import jwt
import logging

from registrations_service.core.config import config
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import redis_manager
from registrations_service.schemas.common import Actor, UserRole

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer()


class AuthenticationError(Exception):
    """Custom exception for authentication errors."""
    pass


async def get_current_actor(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    """
    Extract the caller's identity from the JWT token.

    Args:
        credentials: HTTP Bearer token credentials

    Returns:
        Actor with user id, email, name and role

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        jwt_secret = await config.get_jwt_secret()
        jwt_algorithm = await config.get_jwt_algorithm()

        payload = jwt.decode(
            credentials.credentials,
            jwt_secret,
            algorithms=[jwt_algorithm]
        )

        user_id = payload.get("user_id") or payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token: missing user_id")

        return Actor(
            user_id=str(user_id),
            email=payload.get("email"),
            name=payload.get("name"),
            role=payload.get("role") or UserRole.ATTENDEE,
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except Exception as e:
        logger.error(f"Authentication error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_organizer(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Require an organizer or admin role (creating events)."""
    if actor.role not in (UserRole.ORGANIZER, UserRole.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organizer access required"
        )
    return actor


async def require_payment_gateway(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Require the payment gateway service identity (or an admin)."""
    if not actor.is_trusted_service:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Payment gateway access required"
        )
    return actor


async def check_service_health() -> Dict[str, Any]:
    """
    Check the health of all service dependencies.

    Returns:
        Dictionary with health status of all components
    """
    health_status = {
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }

    try:
        with db_manager.get_session() as session:
            session.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["database"] = "unhealthy"

    try:
        redis_healthy = await redis_manager.health_check()
        health_status["redis"] = "healthy" if redis_healthy else "unhealthy"
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        health_status["redis"] = "unhealthy"

    if health_status["database"] == "healthy" and health_status["redis"] == "healthy":
        health_status["overall"] = "healthy"
    else:
        health_status["overall"] = "unhealthy"

    return health_status
