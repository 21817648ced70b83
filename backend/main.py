import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.auth import auth_backend, fastapi_users, self_registration_enabled
from core.config import settings
from core.errors import register_error_handlers
from core.logging_config import configure_logging
from db.database import create_db_and_tables, engine
from db.migrations import run_migrations
from routers.admin import router as admin_router
from routers.devices import router as devices_router
from routers.inventory import router as inventory_router
from routers.reports import router as reports_router
from routers.users import router as users_router
from schemas.users import UserCreate, UserRead
from services.side_effects import SideEffectQueue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await run_migrations(engine)
    await create_db_and_tables()

    side_effects = SideEffectQueue()
    side_effects.start()
    app.state.side_effects = side_effects
    logger.info("Inventory API started")
    try:
        yield
    finally:
        await side_effects.stop()
        logger.info("Inventory API stopped")


app = FastAPI(
    title="Device Inventory API",
    description="API for tracking device stock through an approval-gated ledger",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(self_registration_enabled)],
)
app.include_router(users_router, prefix="/users", tags=["users"])

# Inventory routes
app.include_router(devices_router, prefix="/devices", tags=["devices"])
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
app.include_router(reports_router, prefix="/reports", tags=["reports"])


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
