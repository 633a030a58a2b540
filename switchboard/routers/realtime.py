import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from switchboard.logging_config import get_logger

logger = get_logger("routers.realtime")

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/companies/{company_id}")
async def company_events(websocket: WebSocket, company_id: str):
    """Stream pipeline events for one tenant.

    Client frames are read only to notice a disconnect while no events are flowing.
    """
    bus = websocket.app.state.container.events
    queue = bus.subscribe(company_id)
    await websocket.accept()
    logger.info(f"Realtime subscriber connected for company {company_id}")
    getter = asyncio.ensure_future(queue.get())
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        while True:
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                if receiver.result()["type"] == "websocket.disconnect":
                    break
                receiver = asyncio.ensure_future(websocket.receive())
            if getter in done:
                await websocket.send_json(getter.result().to_dict())
                getter = asyncio.ensure_future(queue.get())
    except WebSocketDisconnect:
        pass
    finally:
        getter.cancel()
        receiver.cancel()
        bus.unsubscribe(queue)
        logger.info(f"Realtime subscriber left company {company_id}")
