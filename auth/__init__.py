"""Authentication module for Supabase-issued JWTs.

This module provides:
1. Bearer token verification with the project's JWT secret
2. Admin resolution from the user_roles table (the service-role key is always admin)
3. FastAPI dependencies for protecting routes
"""

import logging
from typing import Optional, Dict, Any
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError, ExpiredSignatureError

from database import get_pool
from errors import AuthError, ConfigError, ForbiddenError

# Configure logging
logger = logging.getLogger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
SERVICE_ROLE = "service_role"
ADMIN_ROLE = "admin"

class AuthManager:
    """Verifies tokens and resolves roles."""

    def __init__(self, pool=None, jwt_secret: Optional[str] = None):
        """Initialize auth manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            jwt_secret: Token signing secret. Read from settings if not provided.
        """
        self.pool = pool
        self._jwt_secret = jwt_secret

    async def ensure_pool(self):
        """Ensure database pool is available."""
        if not self.pool:
            self.pool = await get_pool()

    @property
    def jwt_secret(self) -> str:
        if self._jwt_secret is None:
            from config import settings_conf
            self._jwt_secret = settings_conf.get('supabase_jwt_secret') or ''
        return self._jwt_secret

    def decode_token(self, token: str) -> Dict[str, Any]:
        """Verify a bearer token.

        Args:
            token: The JWT from the Authorization header

        Returns:
            Dict containing:
                - id: User id (``sub`` claim)
                - email: Email claim, if any
                - role: Role claim
                - is_service: True for the service-role key

        Raises:
            ConfigError: If no JWT secret is configured
            AuthError: If the token is invalid or expired
        """
        if not self.jwt_secret:
            raise ConfigError("Authentication is not configured")

        try:
            # Supabase sets aud=authenticated, which we do not pin
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                options={'verify_aud': False}
            )
        except ExpiredSignatureError:
            raise AuthError("Session has expired")
        except JWTError as e:
            raise AuthError(f"Invalid token: {str(e)}")

        role = payload.get('role')
        is_service = role == SERVICE_ROLE
        user_id = payload.get('sub') or (SERVICE_ROLE if is_service else None)
        if not user_id:
            raise AuthError("Token has no subject")

        return {
            'id': user_id,
            'email': payload.get('email'),
            'role': role,
            'is_service': is_service
        }

    async def is_admin(self, user: Dict[str, Any]) -> bool:
        """Service principals and users holding the admin role."""
        if user.get('is_service'):
            return True

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT EXISTS(SELECT 1 FROM user_roles WHERE user_id = $1 AND role = $2)',
                user['id'],
                ADMIN_ROLE
            )

    async def authenticate(self, token: str) -> Dict[str, Any]:
        """Decode a token and attach ``is_admin``."""
        user = self.decode_token(token)
        user['is_admin'] = await self.is_admin(user)
        return user

# Create global instance
manager = AuthManager()

# FastAPI security scheme; missing tokens are reported by get_current_user
auth_scheme = HTTPBearer(
    auto_error=False,
    description="Supabase access token"
)

def get_auth_manager() -> AuthManager:
    """FastAPI dependency returning the auth manager."""
    return manager

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    auth: AuthManager = Depends(get_auth_manager)
) -> Dict[str, Any]:
    """FastAPI dependency for getting the authenticated user.

    Raises:
        AuthError: If the token is missing or invalid
    """
    if not credentials or not credentials.credentials:
        raise AuthError("Authorization required")
    return await auth.authenticate(credentials.credentials)

async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    auth: AuthManager = Depends(get_auth_manager)
) -> Optional[Dict[str, Any]]:
    """Like get_current_user, but anonymous callers get None."""
    if not credentials or not credentials.credentials:
        return None
    return await auth.authenticate(credentials.credentials)

async def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """FastAPI dependency that only lets admins through.

    Raises:
        ForbiddenError: If the caller is not an admin
    """
    if not user.get('is_admin'):
        logger.warning(f"Admin access denied for {user['id']}")
        raise ForbiddenError("Admin access required")
    return user

# Export public interface
__all__ = [
    'manager',
    'AuthManager',
    'get_auth_manager',
    'get_current_user',
    'get_optional_user',
    'require_admin',
    'JWT_ALGORITHM'
]
