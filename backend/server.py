from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from backend.core.config import get_payment_settings
from backend.core.database import SessionLocal, engine, init_db
from backend.api import root, auth, accounts, payments

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("anchor")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    settings = get_payment_settings()
    logger.info(
        "Anchor API up: provider=%s test_mode=%s callback=%s",
        settings.default_provider, settings.test_mode, settings.callback_url,
    )
    yield
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(title="Anchor API", lifespan=lifespan)

    app.include_router(root.router)
    app.include_router(auth.router)
    app.include_router(accounts.router)
    app.include_router(payments.router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health():
        db_ok = False
        try:
            async with SessionLocal() as db:
                await db.execute(text("SELECT 1"))
            db_ok = True
        except Exception:
            logger.warning("Health check could not reach the database", exc_info=True)
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
        }

    return app


app = create_app()
