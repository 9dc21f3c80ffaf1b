# app/routers/calls.py
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.services.transfer_service import transfer_call
from app.services.twilio_client import TwilioClient, get_twilio_client

router = APIRouter(prefix="/calls", tags=["calls"])


class TransferRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    call_sid: str
    transfer_to: str
    transfer_type: str = "warm"


@router.post("/transfer")
def transfer_call_endpoint(
    payload: TransferRequest,
    twilio_client: TwilioClient = Depends(get_twilio_client),
) -> Dict[str, Any]:
    """
    Transfer an active call to the operator line.

    - warm: caller is parked in a conference and the target dialed into it
    - cold: caller is redirected straight to the target
    """
    result = transfer_call(
        twilio_client,
        call_sid=payload.call_sid,
        transfer_to=payload.transfer_to,
        transfer_type=payload.transfer_type,
    )
    return {
        "success": True,
        "transfer": {
            "type": result.type,
            "transferredTo": result.transferred_to,
            "conferenceName": result.conference_name,
            "targetCallSid": result.target_call_sid,
        },
    }
