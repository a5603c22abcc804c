#!/usr/bin/env python3
"""
VoiceDescription FastAPI Server

Turns stored videos and images into narrated audio descriptions for
visually impaired audiences. Clients create a job, then poll it; each poll
advances the job by one step.
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from voicedesc.config import (
    APP_NAME,
    APP_VERSION,
    DRIVER_ENABLED,
    LOG_LEVEL,
    SERVER_HOST,
    SERVER_PORT,
    SPEECH_PROVIDER,
)
from voicedesc.database import init_db, close_db
from voicedesc.services.orchestrator import get_orchestrator
from voicedesc.services.job_processor import get_pipeline_driver
from voicedesc.routers import health_router, jobs_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Initialize database and create tables
        - Load the local speech model (chatterbox only)
        - Start the pipeline driver (unless disabled)

    Shutdown:
        - Stop the pipeline driver
        - Close database connections
    """
    print(f'Starting {APP_NAME} v{APP_VERSION}...')

    print('Initializing database...')
    await init_db()

    orchestrator = get_orchestrator()
    speech = orchestrator.machine.providers.speech

    if SPEECH_PROVIDER == 'chatterbox':
        print('Loading local speech model...')
        try:
            speech.load_model()
            print('Model loaded!')
        except Exception as e:
            # The model is loaded lazily on the first synthesis instead
            print(f'Model not loaded yet, will retry on first use: {e}')

    driver = None
    if DRIVER_ENABLED:
        print('Starting pipeline driver...')
        driver = get_pipeline_driver()
        await driver.start()
    else:
        print('Pipeline driver disabled, jobs advance only when polled')

    print(f'Server ready at http://{SERVER_HOST}:{SERVER_PORT}')
    print('API documentation available at /docs')

    yield

    print('Shutting down...')

    if driver:
        await driver.stop()

    if SPEECH_PROVIDER == 'chatterbox':
        speech.cleanup()

    await close_db()

    print('Shutdown complete.')


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description='Audio descriptions of videos and images for visually impaired audiences.',
    version=APP_VERSION,
    lifespan=lifespan,
)

# Register routers
app.include_router(health_router)
app.include_router(jobs_router)


if __name__ == '__main__':
    logging.basicConfig(
        level=LOG_LEVEL,
        format='%(asctime)s | (%(name)s) [%(levelname)s]: %(message)s',
        handlers=[logging.StreamHandler()],
    )
    uvicorn.run(
        app,
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=False,
        log_level=LOG_LEVEL.lower(),
    )
