from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import balances
from ..deps import get_tables, require_admin
from ..tables import TableClient
from ..validation import PersonName

router = APIRouter(prefix="/branches", tags=["branches"])


class BranchIn(BaseModel):
    name: PersonName


@router.get("")
def list_branches(tables: TableClient = Depends(get_tables)):
    return {"branches": balances.list_branches(tables)}


@router.post("", dependencies=[Depends(require_admin)])
def create_branch(data: BranchIn, tables: TableClient = Depends(get_tables)):
    row = tables.insert("branches", {"name": data.name})
    return {"id": row["id"]}


@router.get("/{branch_id}/closed-dates")
def list_closed_dates(branch_id: int, tables: TableClient = Depends(get_tables)):
    return {"dates": balances.list_closed_dates(tables, branch_id)}
