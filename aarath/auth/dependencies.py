from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from aarath.core.config import settings
from aarath.core.errors import AuthError
from aarath.auth.utils import verify_identity_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.identity_token_url, auto_error=False)

async def get_optional_identity(token: str | None = Depends(oauth2_scheme)):
    if not token:
        return None
    return await verify_identity_token(token)

async def get_current_identity(identity=Depends(get_optional_identity)):
    if identity is None:
        raise AuthError("User must be authenticated")
    return identity
