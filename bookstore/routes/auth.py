from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth_service import AuthService
from ..db import get_db
from ..events import publish
from ..schemas import AuthOut, LoginIn, RegisterIn, UserOut
from ..security import Caller, require_user

router = APIRouter()


@router.post("/register", response_model=AuthOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    result = AuthService(db).register(payload)
    publish(
        "user.registered",
        {"user_id": result.user.id, "email": result.user.email, "username": result.user.username},
        safe=True,
    )
    return result


@router.post("/login", response_model=AuthOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    return AuthService(db).login(payload.email, payload.password)


@router.get("/me", response_model=UserOut)
def me(caller: Caller = Depends(require_user), db: Session = Depends(get_db)):
    return AuthService(db).get_profile(caller.user_id)
