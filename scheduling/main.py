import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from scheduling.core import config
from scheduling.database import ensure_scheduling_schema
from scheduling.routes import availability_routes, booking_routes
from scheduling.services.expiration_sweeper import expiration_sweeper_loop

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

_background_tasks: list[asyncio.Task] = []


@app.on_event('startup')
async def initialize_scheduling() -> None:
    config.validate_runtime_config()

    try:
        ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')

    if config.SWEEP_ENABLED:
        _background_tasks.append(asyncio.create_task(expiration_sweeper_loop()))
        logger.info('Expiration sweeper scheduled every %ss', config.SWEEP_INTERVAL_SECONDS)


@app.on_event('shutdown')
async def stop_background_tasks() -> None:
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
