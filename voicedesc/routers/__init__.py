"""
FastAPI routers.
"""
from voicedesc.routers.health import router as health_router
from voicedesc.routers.jobs import router as jobs_router

__all__ = ['health_router', 'jobs_router']
