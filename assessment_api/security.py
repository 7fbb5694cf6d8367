import logging
import secrets

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_api import config
from assessment_api.database import get_db
from assessment_api.errors import Forbidden
from assessment_api.models import User, UserRole

logger = logging.getLogger(__name__)

basic = HTTPBasic(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(9)


async def ensure_admin(db: AsyncSession) -> User:
    """Create the bootstrap administrator or refresh its password from config."""
    result = await db.execute(select(User).where(User.login == config.ADMIN_LOGIN))
    admin = result.scalar_one_or_none()
    if admin is None:
        admin = User(
            name=config.ADMIN_NAME,
            login=config.ADMIN_LOGIN,
            role=UserRole.ADMIN.value,
            password_hash=hash_password(config.ADMIN_PASSWORD),
        )
        db.add(admin)
        logger.info(f"Created bootstrap administrator '{config.ADMIN_LOGIN}'")
    elif not verify_password(config.ADMIN_PASSWORD, admin.password_hash) or admin.role != UserRole.ADMIN.value:
        admin.password_hash = hash_password(config.ADMIN_PASSWORD)
        admin.role = UserRole.ADMIN.value
        logger.info(f"Refreshed bootstrap administrator '{config.ADMIN_LOGIN}'")
    await db.commit()
    return admin


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid login or password",
        headers={"WWW-Authenticate": "Basic"},
    )


async def get_current_user(
    credentials: HTTPBasicCredentials = Depends(basic),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise _unauthorized()
    result = await db.execute(select(User).where(User.login == credentials.username))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(credentials.password, user.password_hash):
        raise _unauthorized()
    return user


async def require_staff(user: User = Depends(get_current_user)) -> User:
    if user.role not in (UserRole.ADMIN.value, UserRole.CURATOR.value):
        raise Forbidden("Staff access required")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise Forbidden("Administrator access required")
    return user


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN.value
