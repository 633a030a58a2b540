from fastapi import APIRouter, Depends, HTTPException

from switchboard.container import Container, get_container
from switchboard.errors import (
    AuthFailedError,
    AuthRequiredError,
    ChannelUnsupportedError,
    DriverError,
    NotFoundError,
    SwitchboardError,
)
from switchboard.logging_config import get_logger
from switchboard.schemas.channel import (
    ActiveChannelsResponse,
    ChannelActionResponse,
    ChannelStatusResponse,
    QRCodeResponse,
    SendMessageRequest,
    SendMessageResponse,
    WebhookAck,
)
from switchboard.services.drivers.base import OutboundMessage

logger = get_logger("routers.channels")

router = APIRouter(prefix="/channels", tags=["channels"])


def to_http_error(error: SwitchboardError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (AuthRequiredError, AuthFailedError, ChannelUnsupportedError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, DriverError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.get("/active", response_model=ActiveChannelsResponse)
async def list_active_channels(container: Container = Depends(get_container)):
    channel_ids = container.runtime.get_active_channel_ids()
    return ActiveChannelsResponse(channel_ids=channel_ids, count=len(channel_ids))


@router.post("/{channel_id}/start", response_model=ChannelActionResponse)
async def start_channel(channel_id: str, container: Container = Depends(get_container)):
    try:
        await container.runtime.start_channel(channel_id)
    except SwitchboardError as e:
        raise to_http_error(e)
    return ChannelActionResponse(success=True, channel_id=channel_id, message="started")


@router.post("/{channel_id}/stop", response_model=ChannelActionResponse)
async def stop_channel(channel_id: str, container: Container = Depends(get_container)):
    stopped = await container.runtime.stop_channel(channel_id)
    return ChannelActionResponse(
        success=True,
        channel_id=channel_id,
        message="stopped" if stopped else "not running",
    )


@router.post("/{channel_id}/restart", response_model=ChannelActionResponse)
async def restart_channel(channel_id: str, container: Container = Depends(get_container)):
    try:
        await container.runtime.restart_channel(channel_id)
    except SwitchboardError as e:
        raise to_http_error(e)
    return ChannelActionResponse(success=True, channel_id=channel_id, message="restarted")


@router.get("/{channel_id}/status", response_model=ChannelStatusResponse)
async def channel_status(channel_id: str, container: Container = Depends(get_container)):
    try:
        status = await container.runtime.get_channel_status(channel_id)
    except SwitchboardError as e:
        raise to_http_error(e)
    return ChannelStatusResponse(**status.to_dict())


@router.get("/{channel_id}/qr", response_model=QRCodeResponse)
async def channel_qr(channel_id: str, container: Container = Depends(get_container)):
    try:
        result = await container.pairing.get_channel_qr(channel_id)
    except SwitchboardError as e:
        raise to_http_error(e)
    return QRCodeResponse(
        qr_code=result.qr_code,
        qr_code_url=result.qr_code_url,
        session_id=result.session_id,
        expires_at=result.expires_at,
        already_authenticated=result.already_authenticated,
    )


@router.post("/{channel_id}/messages", response_model=SendMessageResponse)
async def send_message(
    channel_id: str,
    request: SendMessageRequest,
    container: Container = Depends(get_container),
):
    try:
        response = await container.runtime.emit_message(
            channel_id,
            OutboundMessage(to=request.to, text=request.text, conversation_id=request.conversation_id),
        )
    except SwitchboardError as e:
        raise to_http_error(e)
    return SendMessageResponse(success=response.success, message_id=response.message_id, error=response.error)


@router.post("/{channel_id}/webhook", response_model=WebhookAck)
async def channel_webhook(channel_id: str, payload: dict, container: Container = Depends(get_container)):
    """Provider callbacks. Always acknowledged so providers don't retry storms."""
    try:
        accepted = await container.runtime.handle_webhook(channel_id, payload)
    except NotFoundError:
        logger.warning(f"Webhook for inactive channel {channel_id} ignored")
        return WebhookAck(success=False, accepted=0)
    except Exception as e:
        logger.error(
            "Webhook processing failed",
            extra={"context": {"channel_id": channel_id, "error": str(e), "error_type": type(e).__name__}},
        )
        return WebhookAck(success=False, accepted=0)
    return WebhookAck(success=True, accepted=accepted)
