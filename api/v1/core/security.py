import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from api.config.settings import AuthMode, Settings, SettingsDep


@dataclass
class Principal:
    """Represents the current authenticated caller."""

    user_id: str
    roles: list[str]


async def get_principal(
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    settings: Settings = SettingsDep,
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns dev defaults with admin role
    - dev: Identity taken from the X-User-ID header
    - token: Requires "Authorization: Bearer <API_TOKEN>"
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id, roles=["admin"])
    elif settings.auth_mode == AuthMode.DEV:
        # Require headers in dev mode
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID header is required in dev auth mode",
            )

        return Principal(user_id=x_user_id, roles=["admin"])
    elif settings.auth_mode == AuthMode.TOKEN:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Access denied. No token provided.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not hmac.compare_digest(token.strip(), settings.api_token or ""):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return Principal(user_id="api-token", roles=["admin"])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


# Convenience type alias for dependency injection
PrincipalDep = Depends(get_principal)
