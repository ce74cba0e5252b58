"""
Driver router — GET /v1/driver/state, POST /v1/driver/online, /offline,
                /location, /accept, /decline, /job/finish
"""
import logging

from fastapi import APIRouter, Depends, Request, status

from dispatch_client.middleware.auth import get_current_driver
from dispatch_client.schemas.schemas import (
    AcceptRideRequest,
    AcceptRideResponse,
    DriverStateResponse,
    GoOnlineRequest,
    GoOnlineResponse,
    Location,
    LocationUpdateRequest,
)
from dispatch_client.services.registry import DriverRegistry
from dispatch_client.services.session import SessionController

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/driver", tags=["Driver"])


def get_registry(request: Request) -> DriverRegistry:
    return request.app.state.registry


def get_controller(
    driver_id: str = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
) -> SessionController:
    return registry.get(driver_id)


@router.get("/state", response_model=DriverStateResponse)
async def get_state(controller: SessionController = Depends(get_controller)):
    return controller.snapshot()


@router.post("/online", response_model=GoOnlineResponse)
async def go_online(
    payload: GoOnlineRequest,
    driver_id: str = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
):
    """Seed permission/position from the device, then register the session."""
    source = registry.source(driver_id)
    source.permission_granted = payload.permission_granted
    if payload.lat is not None and payload.lng is not None:
        source.push(Location(latitude=payload.lat, longitude=payload.lng))
    session_id = await registry.get(driver_id).go_online()
    logger.info("Driver %s online via console (session=%s)", driver_id, session_id)
    return GoOnlineResponse(session_id=session_id, is_online=True)


@router.post("/offline", response_model=DriverStateResponse)
async def go_offline(controller: SessionController = Depends(get_controller)):
    await controller.go_offline()
    return controller.snapshot()


@router.post("/location", status_code=status.HTTP_204_NO_CONTENT)
async def report_location(
    payload: LocationUpdateRequest,
    driver_id: str = Depends(get_current_driver),
    registry: DriverRegistry = Depends(get_registry),
):
    """High-frequency device sample; fans out to heartbeat and job relay."""
    registry.source(driver_id).push(
        Location(
            latitude=payload.lat,
            longitude=payload.lng,
            accuracy=payload.accuracy,
            speed=payload.speed,
            heading=payload.heading,
        )
    )


@router.post("/accept", response_model=AcceptRideResponse)
async def accept_request(
    payload: AcceptRideRequest,
    controller: SessionController = Depends(get_controller),
):
    return await controller.presenter.accept(payload.request_id)


@router.post("/decline", response_model=DriverStateResponse)
async def decline_request(controller: SessionController = Depends(get_controller)):
    await controller.presenter.decline()
    return controller.snapshot()


@router.post("/job/finish", response_model=DriverStateResponse)
async def finish_job(controller: SessionController = Depends(get_controller)):
    await controller.finish_job()
    return controller.snapshot()
