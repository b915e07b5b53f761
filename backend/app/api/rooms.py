from fastapi import APIRouter, Depends, Request

from game import RoomRegistry

router = APIRouter()


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


@router.get("/health")
async def health():
    return {"ok": True, "project": "cardgame"}


@router.get("/rooms")
async def rooms(registry: RoomRegistry = Depends(get_registry)):
    return {"rooms": registry.summaries()}
