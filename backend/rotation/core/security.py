import jwt

from rotation.config import settings


def decode_token(token: str) -> dict:
    """Verify an access token issued by the auth service. Raises ValueError if invalid."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise ValueError("Invalid token") from e
