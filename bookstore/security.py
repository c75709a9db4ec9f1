import os
import time
from dataclasses import dataclass
from enum import Enum

from fastapi import Header, HTTPException, Depends
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")
ALGO = "HS256"

JWT_ISSUER = os.getenv("JWT_ISSUER")       # optional
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")   # optional
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))

# pbkdf2_sha256 avoids bcrypt backend issues in some environments
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> "Role":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.CUSTOMER


class Capability(str, Enum):
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_ORDERS = "manage_orders"
    VIEW_ALL_ORDERS = "view_all_orders"


ROLE_CAPABILITIES = {
    Role.CUSTOMER: frozenset(),
    Role.ADMIN: frozenset(Capability),
}


def has_capability(role: Role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


@dataclass(frozen=True)
class Caller:
    user_id: int
    username: str
    email: str
    role: Role
    full_name: str = ""

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def make_access_token(user_id: int, username: str, email: str, role: Role, full_name: str) -> tuple[str, int]:
    """Returns the signed token and its expiry as a unix timestamp."""
    now = int(time.time())
    exp = now + JWT_EXPIRE_HOURS * 3600
    payload = {
        "sub": str(user_id),
        "username": username,
        "email": email,
        "role": Role(role).value,
        "name": full_name,
        "iat": now,
        "exp": exp,
    }
    if JWT_ISSUER:
        payload["iss"] = JWT_ISSUER
    if JWT_AUDIENCE:
        payload["aud"] = JWT_AUDIENCE

    return jwt.encode(payload, JWT_SECRET, algorithm=ALGO), exp


def decode_access_token(token: str) -> dict:
    options = {"verify_aud": bool(JWT_AUDIENCE)}
    return jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[ALGO],
        audience=JWT_AUDIENCE,
        issuer=JWT_ISSUER,
        options=options,
    )


def require_user(authorization: str = Header(default=None)) -> Caller:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        claims = decode_access_token(token)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    return Caller(
        user_id=user_id,
        username=claims.get("username", ""),
        email=claims.get("email", ""),
        role=Role.parse(claims.get("role", Role.CUSTOMER.value)),
        full_name=claims.get("name", ""),
    )


def require_capability(capability: Capability):
    def dependency(caller: Caller = Depends(require_user)) -> Caller:
        if not caller.can(capability):
            raise HTTPException(status_code=403, detail="Admin only")
        return caller

    return dependency


require_admin = require_capability(Capability.MANAGE_CATALOG)
require_order_admin = require_capability(Capability.MANAGE_ORDERS)
