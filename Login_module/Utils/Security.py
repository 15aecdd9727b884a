import jwt
from fastapi import HTTPException

from config import settings


def decode_access_token(token: str):
    """
    Decodes and validates JWT access token.
    Tokens are issued by the auth service; this API only verifies them.
    Raises HTTPException for invalid or expired tokens.
    """
    try:
        decoded = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return decoded
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
