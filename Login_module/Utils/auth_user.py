from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from Login_module.Utils import Security as security

security_scheme = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """Owner identity taken from the access token. Users themselves live in the auth service."""
    id: str
    email: str = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> CurrentUser:
    """
    Validates JWT token and returns the current authenticated owner.
    """
    token = credentials.credentials

    try:
        payload = security.decode_access_token(token)
    except HTTPException as e:
        # Re-raise the HTTPException from decode_access_token
        raise e
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired access token: {str(e)}"
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not contain user info"
        )

    return CurrentUser(id=str(user_id), email=payload.get("email"))
