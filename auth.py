# auth.py
"""
Bearer-token authentication.

Tokens are HS256 JWTs issued by the account service and carry the user's
``id`` and ``role``. Routes depend on ``get_current_principal`` (or
``require_role``) and pass the resulting Principal into the services.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt

import config
from models.user import UserRole


@dataclass(frozen=True)
class Principal:
     id: int
     role: UserRole

     @property
     def is_admin(self) -> bool:
          return self.role == UserRole.ADMIN

     @property
     def is_landlord(self) -> bool:
          return self.role == UserRole.LANDLORD

     @property
     def is_tenant(self) -> bool:
          return self.role == UserRole.TENANT


def create_access_token(user_id: int, role: str, expires_minutes: int = 60) -> str:
     payload = {
          "id": user_id,
          "role": role,
          "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
     }
     return jwt.encode(payload, config.JWT_SECRET, algorithm=config.ALGORITHM)


# Token Auth Dependency
def verify_token(request: Request) -> dict:
     auth = request.headers.get("Authorization")
     if not auth or not auth.startswith("Bearer "):
          raise HTTPException(status_code=401, detail="Missing token")
     token = auth.split(" ")[1]
     try:
          return jwt.decode(token, config.JWT_SECRET, algorithms=[config.ALGORITHM])
     except JWTError:
          raise HTTPException(status_code=403, detail="Invalid token")


def get_current_principal(payload: dict = Depends(verify_token)) -> Principal:
     try:
          return Principal(id=int(payload["id"]), role=UserRole(payload["role"]))
     except (KeyError, TypeError, ValueError):
          raise HTTPException(status_code=403, detail="Invalid token")


def require_role(*roles: UserRole):
     """Dependency factory: the principal must hold one of ``roles``."""

     def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
          if principal.role not in roles:
               raise HTTPException(status_code=403, detail="Insufficient permissions")
          return principal

     return dependency
