from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import BillingError
from app.core.logging import setup_logging
import app.models  # noqa: F401  # force model registration

from app.api.v1.auth import router as auth_router
from app.api.v1.tenants import router as tenants_router
from app.api.v1.billing import router as billing_router


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


def create_application() -> FastAPI:
    setup_logging()

    app = FastAPI(title="Studio API")

    # CORS Configuration (Dev + Production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            # Local development (Vite frontend)
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            settings.APP_BASE_URL.rstrip("/"),
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BillingError, billing_error_handler)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "studio"}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(tenants_router, prefix="/api/v1")
    app.include_router(billing_router, prefix="/api/v1")

    return app


app = create_application()
