"""Tests for bearer token verification and admin resolution."""

import time

import pytest
from jose import jwt

from auth import AuthManager, JWT_ALGORITHM, require_admin
from errors import AuthError, ConfigError, ForbiddenError

SECRET = "super-secret-jwt-token-for-tests"

def token(secret=SECRET, **claims):
    payload = {'sub': 'user-1', 'email': 'jane@example.com', 'role': 'authenticated', 'aud': 'authenticated'}
    payload.update(claims)
    # None drops a claim
    payload = {key: value for key, value in payload.items() if value is not None}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

class RolePool:
    """Pool answering the user_roles lookup."""

    def __init__(self, admins):
        self.admins = set(admins)
        self.queries = 0

    def acquire(self):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def fetchval(self, query, user_id, role):
        self.queries += 1
        return user_id in self.admins and role == 'admin'

def test_decode_valid_token():
    user = AuthManager(jwt_secret=SECRET).decode_token(token())
    assert user == {'id': 'user-1', 'email': 'jane@example.com', 'role': 'authenticated', 'is_service': False}

def test_decode_service_role():
    user = AuthManager(jwt_secret=SECRET).decode_token(token(sub=None, role='service_role'))
    assert user['is_service'] is True
    assert user['id'] == 'service_role'

def test_wrong_secret_rejected():
    with pytest.raises(AuthError):
        AuthManager(jwt_secret=SECRET).decode_token(token(secret='another-secret'))

def test_expired_token():
    with pytest.raises(AuthError) as exc:
        AuthManager(jwt_secret=SECRET).decode_token(token(exp=int(time.time()) - 60))
    assert exc.value.message == 'Session has expired'
    assert exc.value.status_code == 401

def test_garbage_token():
    with pytest.raises(AuthError):
        AuthManager(jwt_secret=SECRET).decode_token('not-a-jwt')

def test_token_without_subject():
    with pytest.raises(AuthError):
        AuthManager(jwt_secret=SECRET).decode_token(token(sub=None))

def test_missing_secret_is_config_error():
    with pytest.raises(ConfigError):
        AuthManager(jwt_secret='').decode_token(token())

@pytest.mark.asyncio
async def test_admin_from_user_roles():
    pool = RolePool(admins={'admin-1'})
    auth = AuthManager(pool=pool, jwt_secret=SECRET)

    admin = await auth.authenticate(token(sub='admin-1'))
    user = await auth.authenticate(token(sub='user-1'))

    assert admin['is_admin'] is True
    assert user['is_admin'] is False

@pytest.mark.asyncio
async def test_service_role_is_admin_without_lookup():
    pool = RolePool(admins=set())
    auth = AuthManager(pool=pool, jwt_secret=SECRET)

    user = await auth.authenticate(token(sub=None, role='service_role'))

    assert user['is_admin'] is True
    assert pool.queries == 0

@pytest.mark.asyncio
async def test_require_admin():
    admin = {'id': 'admin-1', 'is_admin': True}
    assert await require_admin(admin) is admin
    with pytest.raises(ForbiddenError):
        await require_admin({'id': 'user-1', 'is_admin': False})
