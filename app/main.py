import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.collections.router import router as collections_router
from app.api.v1.fees.router import router as fees_router
from app.api.v1.payments.router import router as payments_router
from app.api.v1.student_fees.router import router as student_fees_router
from app.core.config import settings


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="School Fee Ledger")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(fees_router)
    app.include_router(student_fees_router)
    app.include_router(payments_router)
    app.include_router(collections_router)

    return app


app = create_app()
