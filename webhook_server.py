"""
FastAPI Payment Server
Serves the PayHero payment endpoint (process / callback / status) with CORS
handling and a per-request debug log
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Dict

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.responses import Response  # noqa: E402

from config import Config  # noqa: E402
from database import create_tables, dispose_engine  # noqa: E402
from handlers.payhero_webhook import router as payhero_router  # noqa: E402
from utils.debug_log import begin_request_log, install_debug_log_handler  # noqa: E402

logger = logging.getLogger(__name__)


def cors_headers(origin: str) -> Dict[str, str]:
    """Echo an allow-listed origin, otherwise answer with a wildcard"""
    allowed_origin = origin if origin in Config.ALLOWED_ORIGINS else "*"
    return {
        "Access-Control-Allow-Origin": allowed_origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: verify schema. Shutdown: release database connections."""
    Config.log_configuration()
    try:
        await create_tables()
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise

    yield

    await dispose_engine()
    logger.info("🔄 Payment server shut down")


def create_app() -> FastAPI:
    install_debug_log_handler()

    app = FastAPI(
        title="Mobile Money Payment Service",
        description="PayHero M-Pesa deposits, withdrawals and reconciliation",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_log_and_cors(request: Request, call_next):
        begin_request_log()
        headers = cors_headers(request.headers.get("origin") or "*")

        if request.method == "OPTIONS":
            logger.info("MAIN: Handling CORS preflight request")
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

    @app.get("/health")
    async def health_check():
        """Health check endpoint for deployment probes"""
        return {
            "status": "ok",
            "service": "payments",
            "payhero_configured": Config.payhero_configured(),
        }

    app.include_router(payhero_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host=Config.SERVER_HOST, port=Config.SERVER_PORT)
