import json
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from shop_payments.config import load_auth_settings

auth_settings = load_auth_settings()


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"


def _role_from_claims(claims: dict) -> Optional[str]:
    role = claims.get("app_role")
    if role:
        return role
    # Supabase puts custom claims in app_metadata, sometimes as a JSON string.
    metadata = claims.get("app_metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return None
    if isinstance(metadata, dict):
        return metadata.get("app_role")
    return None


def decode_user(token: str) -> CurrentUser:
    claims = jwt.decode(
        token,
        auth_settings.jwt_secret,
        algorithms=[auth_settings.jwt_algorithm],
        audience=auth_settings.jwt_audience,
        options={"verify_aud": auth_settings.jwt_audience is not None},
    )
    user_id = claims.get("sub") or claims.get("user_id")
    if not user_id:
        raise JWTError("Token has no subject")
    return CurrentUser(user_id=str(user_id), role=_role_from_claims(claims))


def get_current_user(authorization: str = Header(None)) -> CurrentUser:
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported scheme")
        return decode_user(token)
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return user
