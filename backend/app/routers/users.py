from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Literal

from .. import balances
from ..deps import get_tables, require_admin
from ..tables import TableClient
from ..validation import PersonName

router = APIRouter(prefix="/users", tags=["users"])


class UserIn(BaseModel):
    name: PersonName
    role: Literal["employee", "admin"] = "employee"


@router.get("")
def list_users(tables: TableClient = Depends(get_tables)):
    # Closing employees to pick from; roles are visible so the UI can gate the review tab.
    return {"users": balances.list_users(tables)}


@router.post("", dependencies=[Depends(require_admin)])
def create_user(data: UserIn, tables: TableClient = Depends(get_tables)):
    row = tables.insert("users", {"name": data.name, "role": data.role})
    return {"id": row["id"]}
