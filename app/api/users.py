from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.responses import success_response
from app.db.session import get_db
from app.models.schemas import CreateUserRequest, UpdateEmailRequest, UserOut, dump
from app.services import user_service


router = APIRouter(prefix="/api", tags=["users"])


def _user_json(user) -> dict:
    return dump(UserOut.model_validate(user))


@router.get("/users")
def list_users(db: Session = Depends(get_db)) -> JSONResponse:
    users = user_service.get_active_users(db)
    return success_response({"data": [_user_json(u) for u in users], "count": len(users)})


@router.post("/users")
def create_user(body: CreateUserRequest, db: Session = Depends(get_db)) -> JSONResponse:
    user = user_service.create_user(db, body.username, body.email)
    return success_response({"data": _user_json(user), "message": "User created successfully"}, status_code=201)


@router.get("/users/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db)) -> JSONResponse:
    user = user_service.get_user_by_id(db, user_id)
    return success_response({"data": _user_json(user)})


@router.post("/users/{user_id}/email")
def update_email(user_id: str, body: UpdateEmailRequest, db: Session = Depends(get_db)) -> JSONResponse:
    user = user_service.update_user_email(db, user_id, body.email)
    return success_response({"data": _user_json(user), "message": "Email updated successfully"})
