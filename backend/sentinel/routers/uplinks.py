import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse

from ..adapters import AdapterError, UselessFrame, adapt
from ..deps import get_decoder
from ..extension_settings import SettingsNotFound
from ..frame_decoder import encode_downlink
from ..pipeline import UplinkDecoder
from ..results import CanonicalRecord
from ..schemas import DecodeResultOut, ExtensionSettingsOut, UplinkIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["uplinks"])


@router.post("/uplinks", response_model=DecodeResultOut)
async def decode_uplink(payload: UplinkIn, decoder: UplinkDecoder = Depends(get_decoder)):
    record = CanonicalRecord(
        device_id=payload.device_id,
        payload=bytes.fromhex(payload.payload_hex),
        element_count=payload.element_count,
        received_at=payload.received_at or datetime.now(timezone.utc),
    )
    result = await decoder.decode(record)
    return result.to_dict()


@router.post("/uplinks/{network}", response_model=DecodeResultOut)
async def decode_network_uplink(
    network: str,
    message: dict[str, Any] = Body(...),
    decoder: UplinkDecoder = Depends(get_decoder),
):
    try:
        record = adapt(network, message)
    except UselessFrame as exc:
        logger.info("Skipping %s frame: %s", network, exc)
        return JSONResponse(status_code=202, content={"data": {}, "errors": [], "warnings": [str(exc)]})
    except AdapterError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    result = await decoder.decode(record)
    return result.to_dict()


@router.get("/devices/{device_id}/extension-settings", response_model=ExtensionSettingsOut)
async def get_extension_settings(device_id: str, decoder: UplinkDecoder = Depends(get_decoder)):
    try:
        settings = await decoder.settings_store.load(device_id)
    except SettingsNotFound:
        raise HTTPException(status_code=404, detail="no extension settings stored for this device")
    return {"device_id": device_id, "settings": settings.to_dict()}


@router.post("/downlinks/encode")
async def encode_downlink_route(data: Optional[dict[str, Any]] = Body(default=None)):
    return JSONResponse(status_code=501, content=encode_downlink(data or {}))
