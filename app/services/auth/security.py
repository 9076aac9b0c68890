from jose import JWTError, jwt
from typing import Optional

from app.core.config import get_settings
from app.models.auth.token import TokenData


class SecurityService:
    """
    Verifies JWT access tokens issued by the authentication service.
    Only the verification side lives here; login and signup are external.
    """

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify_token(self, token: Optional[str], token_type: str = "access") -> Optional[TokenData]:
        """Verify and decode JWT token"""
        if not token or not self.secret_key:
            return None
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])

            if payload.get("type") != token_type:
                return None

            email: str = payload.get("sub")
            if email is None:
                return None

            return TokenData(email=email, user_id=payload.get("user_id"))
        except JWTError:
            return None
