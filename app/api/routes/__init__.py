from __future__ import annotations

from app.api.routes.companies import router as companies_router
from app.api.routes.employees import router as employees_router
from app.api.routes.health import router as health_router

__all__ = ["companies_router", "employees_router", "health_router"]
