import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict, NotFound, Unauthorized
from .models import User
from .schemas import AuthOut, RegisterIn, UserOut
from .security import Role, hash_password, make_access_token, verify_password

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def to_user_out(u: User) -> UserOut:
    return UserOut.model_validate(u)


def _auth_response(user: User) -> AuthOut:
    token, exp = make_access_token(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=Role.parse(user.role),
        full_name=user.full_name,
    )
    return AuthOut(
        token=token,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        user=to_user_out(user),
    )


class AuthService:
    """Registration, login and session token issuance."""

    def __init__(self, db: Session):
        self.db = db

    def _exists(self, email: str, username: str) -> bool:
        return (
            self.db.query(User.id)
            .filter(or_(User.email == email, User.username == username))
            .first()
            is not None
        )

    def register(self, payload: RegisterIn) -> AuthOut:
        email = payload.email.lower()
        if self._exists(email, payload.username):
            raise Conflict("User with this email or username already exists")

        user = User(
            username=payload.username,
            email=email,
            password_hash=hash_password(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            address=payload.address,
            role=Role.CUSTOMER.value,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against a concurrent registration on the unique index
            self.db.rollback()
            raise Conflict("User with this email or username already exists")
        self.db.refresh(user)

        logger.info("registered user id=%s username=%s", user.id, user.username)
        return _auth_response(user)

    def login(self, email: str, password: str) -> AuthOut:
        user = self.db.query(User).filter(User.email == email.lower()).first()
        # Same message for unknown email and wrong password
        if not user or not verify_password(password, user.password_hash):
            logger.info("failed login for email=%s", email)
            raise Unauthorized(INVALID_CREDENTIALS)
        return _auth_response(user)

    def get_profile(self, user_id: int) -> UserOut:
        user = self.db.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return to_user_out(user)

    def ensure_admin(self, email: str, password: str, username: str = "admin") -> User:
        """Create an admin account unless a user with this email exists."""
        email = email.lower()
        user = self.db.query(User).filter(User.email == email).first()
        if user:
            return user

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            first_name="Admin",
            last_name="User",
            role=Role.ADMIN.value,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("created admin account id=%s email=%s", user.id, email)
        return user
