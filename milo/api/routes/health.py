from fastapi import APIRouter

from milo.core.config import get_settings
from milo.schemas.health import HealthResponse
from milo.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def get_health() -> HealthResponse:
    service = HealthService(get_settings())
    return service.get_status()
