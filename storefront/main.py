import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.config import Settings, settings as default_settings
from storefront.database import build_engine, build_session_factory, create_tables
from storefront.infrastructure.http_clients import HTTPEmailClient
from storefront.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def create_app(settings: Settings = None, email_client=None) -> FastAPI:
    settings = settings or default_settings
    engine = build_engine(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Управление жизненным циклом приложения"""
        await create_tables(engine)
        logger.info("Таблицы созданы")

        missing = settings.missing()
        if missing:
            logger.warning(f"Не заданы настройки: {', '.join(missing)}")

        yield

        logger.info("Приложение останавливается...")
        await engine.dispose()

    app = FastAPI(
        title="Storefront Order Service",
        description="Заказы, оплата LiqPay и письма с подтверждением",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.session_factory = build_session_factory(engine)
    app.state.email_client = email_client or HTTPEmailClient(
        settings.EMAIL_API_URL,
        settings.RESEND_API_KEY,
        settings.EMAIL_FROM,
        timeout=settings.EMAIL_TIMEOUT
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Invalid request: {', '.join(fields)}"}
        )

    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Storefront Order Service работает"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()
