from fastapi import APIRouter

from coachflow.api.v1.endpoints import (
    # Revenue & payouts
    revenue,
    coaches,
    # Enrollment lifecycle
    enrollments,
    # Scheduling
    scheduling,
    sessions,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Revenue ====================
api_router.include_router(
    revenue.router,
    tags=["Revenue"]
)

# ==================== Coaches ====================
api_router.include_router(
    coaches.router,
    prefix="/coaches",
    tags=["Coaches"]
)

# ==================== Enrollments ====================
api_router.include_router(
    enrollments.router,
    prefix="/enrollments",
    tags=["Enrollments"]
)

# ==================== Scheduling ====================
api_router.include_router(
    scheduling.router,
    prefix="/scheduling",
    tags=["Scheduling"]
)

# ==================== Sessions ====================
api_router.include_router(
    sessions.router,
    prefix="/sessions",
    tags=["Sessions"]
)
