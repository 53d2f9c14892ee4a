# storefront/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from storefront.api.routers import carts, checkout, health, orders, payments, users
from storefront.data import models  # noqa: F401  rejestruje tabele w Base.metadata
from storefront.data.database import Base, engine
from storefront.services.session_store import SessionStore
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def create_app(store: SessionStore | None = None, create_tables: bool = True) -> FastAPI:
    store = store or SessionStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
            Base.metadata.create_all(bind=engine)
        store.init()
        logger.info("Session store connected")
        yield
        store.shutdown()

    app = FastAPI(
        title="Storefront Checkout",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store

    # Include routers
    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(orders.router)
    app.include_router(payments.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
