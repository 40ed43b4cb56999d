from fastapi import APIRouter, Depends

from chatsync.repositories.device_repository import DeviceRepository
from chatsync.schemas.chat import DeviceRegistration
from chatsync.utils.dependencies import get_current_user, get_device_repository


router = APIRouter(prefix="/devices", tags=["push"])


@router.post("/register")
async def register_device(payload: DeviceRegistration, current_user: dict = Depends(get_current_user), repo: DeviceRepository = Depends(get_device_repository)):
    doc = await repo.register(current_user["_id"], payload.platform, payload.token)
    return {"ok": True, "device": {"platform": doc["platform"], "token": doc["token"]}}
