from fastapi import Depends, Header, HTTPException, Request
from typing import Optional

from . import balances
from .session import SessionRegistry
from .tables import TableClient


def get_tables(request: Request) -> TableClient:
    return request.app.state.tables


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    tables: TableClient = Depends(get_tables),
):
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="missing user id")
    user = balances.get_user(tables, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="unknown user")
    return {"user_id": user["id"], "name": user.get("name"), "role": user.get("role")}


def require_admin(user=Depends(get_current_user)):
    if str(user.get("role") or "").strip().lower() != "admin":
        raise HTTPException(status_code=403, detail="admin only")
    return user
