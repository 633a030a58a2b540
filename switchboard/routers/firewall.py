from fastapi import APIRouter, Depends

from switchboard.container import Container, get_container
from switchboard.schemas.firewall import FirewallStatsResponse, SenderActionResponse, SenderReportResponse

router = APIRouter(prefix="/firewall", tags=["firewall"])


@router.get("/stats", response_model=FirewallStatsResponse)
async def firewall_stats(container: Container = Depends(get_container)):
    return FirewallStatsResponse(**container.firewall.get_stats())


@router.get("/senders/{sender_id}", response_model=SenderReportResponse)
async def sender_report(sender_id: str, container: Container = Depends(get_container)):
    return SenderReportResponse(**await container.firewall.get_sender_report(sender_id))


@router.post("/senders/{sender_id}/unblock", response_model=SenderActionResponse)
async def unblock_sender(sender_id: str, container: Container = Depends(get_container)):
    await container.firewall.unblock_sender(sender_id)
    return SenderActionResponse(success=True, sender_id=sender_id, message="unblocked")


@router.post("/senders/{sender_id}/reset", response_model=SenderActionResponse)
async def reset_sender(sender_id: str, container: Container = Depends(get_container)):
    reset = await container.firewall.reset_low_risk_violations(sender_id)
    return SenderActionResponse(
        success=reset,
        sender_id=sender_id,
        message="violations cleared" if reset else "sender is blocked or high risk",
    )


@router.delete("/senders/{sender_id}", response_model=SenderActionResponse)
async def clear_sender(sender_id: str, container: Container = Depends(get_container)):
    """Forget everything tracked for a sender: violations, blocks and rate-limit windows."""
    await container.firewall.clear_sender_data(sender_id)
    return SenderActionResponse(success=True, sender_id=sender_id, message="cleared")
