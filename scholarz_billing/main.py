import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scholarz_billing.api.v1.router import api_router
from scholarz_billing.core.config import get_settings
from scholarz_billing.core.errors import register_exception_handlers


def get_application() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    app = FastAPI(title=settings.app_name, debug=settings.debug)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)
    app.include_router(api_router)
    return app


app = get_application()
