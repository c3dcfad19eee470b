"""Guest request endpoint: leads from visitors without an account."""

import logging

from fastapi import APIRouter, status

from westroy.api.deps import Dispatcher
from westroy.schemas.guest_request import GuestRequestAccepted, GuestRequestCreate
from westroy.services.notification_triggers import notify_ops_of_guest_request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=GuestRequestAccepted, status_code=status.HTTP_201_CREATED)
async def create_guest_request(guest: GuestRequestCreate, dispatcher: Dispatcher):
    """Public: hand a guest's name, phone and query to ops.

    Nothing is stored; ops call the guest back.
    """
    dispatcher.dispatch(notify_ops_of_guest_request, guest)
    logger.info("Guest request forwarded to ops")
    return GuestRequestAccepted()
