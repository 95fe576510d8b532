from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.log_config import setup_logging
from app.core.settings import settings
from app.routers.health import router as health_router
from app.routers.mine import router as mine_router
from app.routers.mining_plans import router as mining_plans_router
from app.routers.telegram import router as telegram_router
from app.routers.admin import router as admin_router
from app.db import init_db


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup():
        await init_db()

    app.include_router(health_router)
    app.include_router(mine_router)
    app.include_router(mining_plans_router)
    app.include_router(telegram_router)
    app.include_router(admin_router)

    return app
