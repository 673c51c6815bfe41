from fastapi import APIRouter

from hobbyhub.api.v1.events import router as events_router
from hobbyhub.api.v1.notifications import router as notifications_router
from hobbyhub.api.v1.swipe import router as swipe_router
from hobbyhub.api.v1.users import router as users_router

api_router = APIRouter()
api_router.include_router(swipe_router)
api_router.include_router(users_router)
api_router.include_router(events_router)
api_router.include_router(notifications_router)
