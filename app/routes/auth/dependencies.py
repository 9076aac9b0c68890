from typing import Annotated, Optional
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.database import Database
from app.models.auth.user import UserInDB
from app.services.auth.security import SecurityService

# OAuth2 scheme (tokens are issued by the external auth service)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def get_database():
    """Database dependency"""
    return Database.get_db()


def get_security_service() -> SecurityService:
    return SecurityService()


async def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: AsyncIOMotorDatabase = Depends(get_database),
    security_service: SecurityService = Depends(get_security_service)
) -> Optional[dict]:
    """Get current authenticated user"""
    # Verify token
    token_data = security_service.verify_token(token, "access")
    if token_data is None or token_data.email is None:
        return None

    # Get user from database
    query = {"email": token_data.email.lower()}
    if token_data.user_id:
        try:
            query = {"_id": ObjectId(token_data.user_id)}
        except (InvalidId, TypeError):
            pass
    user = await db.users.find_one(query)

    if user is None:
        return None

    if not user.get("is_active", True):
        return None

    user["_id"] = str(user["_id"])
    return UserInDB.model_validate(user).model_dump(by_alias=True)


def is_admin(user: Optional[dict]) -> bool:
    return bool(user and user.get("is_admin"))
