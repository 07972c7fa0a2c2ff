"""Health check endpoint."""

from fastapi import APIRouter, Request

from src.api.models.health import HealthResponse
from src.resilience.circuit_breaker import CircuitState

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check API health status and the state of its dependencies."""
    services = request.app.state.services
    search_ok = await services.search.health_check()
    breakers = {name: breaker.snapshot() for name, breaker in services.breakers.items()}
    any_open = any(breaker.state == CircuitState.OPEN for breaker in services.breakers.values())

    return HealthResponse(
        status="healthy" if search_ok and not any_open else "degraded",
        version="1.0.0",
        search_backend=search_ok,
        breakers=breakers,
        cache=services.cache.stats(),
        errors=services.tracker.stats(),
    )
