"""
Router registry: imports and exports all API routers.
"""
from routers.certificates import router as certificates_router
from routers.health import router as health_router

all_routers = [
    health_router,
    certificates_router,
]
