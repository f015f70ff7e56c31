from fastapi import APIRouter

from milo.api.routes.assistant import router as assistant_router
from milo.api.routes.auth import router as auth_router
from milo.api.routes.calendar import router as calendar_router
from milo.api.routes.health import router as health_router
from milo.api.routes.notes import router as notes_router
from milo.api.routes.tasks import router as tasks_router
from milo.api.routes.users import router as users_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

# Unversioned paths stay mounted for the current frontend.
for resource_router in (
    health_router,
    auth_router,
    users_router,
    notes_router,
    tasks_router,
    calendar_router,
    assistant_router,
):
    api_router.include_router(resource_router)
    v1_router.include_router(resource_router)

api_router.include_router(v1_router)
