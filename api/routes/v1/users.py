"""
api/routes/v1/users.py -- Admin user management.

Routes (all admin only):
  GET    /api/v1/users             -- list accounts, newest first
  GET    /api/v1/users/{user_id}   -- one account
  PATCH  /api/v1/users/{user_id}   -- change role
  DELETE /api/v1/users/{user_id}   -- delete account

Guards:
  An admin cannot change their own role or delete their own account --
  otherwise the last admin could lock everyone out with one request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import MeResponse, RolePatch, UserListResponse, UserResponse
from auth.dependencies import require_admin
from auth.models import AuthUser
from auth.store import UserStore

logger = logging.getLogger("hostauth.api.users")

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": "User not found."},
    )


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, current_user: AuthUser = Depends(require_admin)) -> UserListResponse:
    """List all accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return UserListResponse(users=[UserResponse.from_user(u) for u in user_store.list_users()])


@router.get("/users/{user_id}", response_model=MeResponse)
def get_user(request: Request, user_id: str, current_user: AuthUser = Depends(require_admin)) -> MeResponse:
    """Return one account. Admin only."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise _not_found()
    return MeResponse(user=UserResponse.from_user(user))


@router.patch("/users/{user_id}", response_model=MeResponse)
def update_user_role(
    request: Request,
    user_id: str,
    body: RolePatch,
    current_user: AuthUser = Depends(require_admin),
) -> MeResponse:
    """Change an account's role. Admin only; not on your own account."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_role_change", "message": "Cannot change your own role."},
        )
    user_store: UserStore = request.app.state.user_store
    user = user_store.update_role(user_id, body.role.value)
    if user is None:
        raise _not_found()
    logger.info("Admin %s set role of %s to %s", current_user.id, user_id, body.role.value)
    return MeResponse(user=UserResponse.from_user(user))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, current_user: AuthUser = Depends(require_admin)) -> Response:
    """Delete an account. Admin only; not your own account."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "Cannot delete your own account."},
        )
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise _not_found()
    logger.info("Admin %s deleted user %s", current_user.id, user_id)
    return Response(status_code=204)
