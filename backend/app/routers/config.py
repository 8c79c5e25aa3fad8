from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import balances
from ..deps import get_tables, require_admin
from ..logs import json_log
from ..tables import TableClient

router = APIRouter(prefix="/settings", tags=["settings"])


class ManualDateSettingIn(BaseModel):
    enabled: bool


@router.get("/manual-date")
def get_manual_date_setting(tables: TableClient = Depends(get_tables)):
    return {"manual_date_enabled": balances.get_manual_date_enabled(tables)}


@router.put("/manual-date")
def set_manual_date_setting(
    data: ManualDateSettingIn,
    tables: TableClient = Depends(get_tables),
    user=Depends(require_admin),
):
    enabled = balances.set_manual_date_enabled(tables, data.enabled)
    json_log("info", "settings.manual_date", enabled=enabled, user_id=user["user_id"])
    return {"manual_date_enabled": enabled}
