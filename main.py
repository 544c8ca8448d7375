import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

import activity_routes
import admin_routes
import auth_routes
import child_routes
import home_program_routes
import patient_detail_routes
import progress_routes
import therapist_routes
from context import AppContext, get_context
from database import USERS, connect, create_document, ensure_indexes
from emailer import EmailService
from errors import install_error_handlers
from policy import SUPERUSER
from schemas import User
from security import hash_password
from settings import load_settings

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def seed_superuser(ctx: AppContext) -> Optional[str]:
    """Create the configured superuser when the database has none."""
    users = ctx.db[USERS]
    if users.find_one({"role": SUPERUSER}):
        return None
    email = ctx.settings.superuser_email.strip().lower()
    if users.find_one({"email": email}):
        logger.warning("Cannot seed superuser: %s is already registered with another role", email)
        return None
    user = User(
        name="Super Admin",
        email=email,
        password_hash=hash_password(ctx.settings.superuser_password, ctx.settings.bcrypt_rounds),
        role=SUPERUSER,
        is_email_verified=True,
    )
    user_id = create_document(ctx.db, USERS, user, ctx.now())
    logger.info("Seeded superuser %s", email)
    return user_id


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    if context is None:
        settings = load_settings()
        context = AppContext(settings=settings, db=connect(settings), mailer=EmailService(settings))
    settings = context.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(context.db)
        seed_superuser(context)
        logger.info("Therapy API ready (%s)", settings.app_env)
        yield

    app = FastAPI(title="Therapy API", lifespan=lifespan)
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app, production=settings.is_production)

    app.include_router(auth_routes.router)
    if settings.is_development:
        app.include_router(auth_routes.dev_router)
    app.include_router(admin_routes.router)
    app.include_router(activity_routes.router)
    app.include_router(therapist_routes.router)
    app.include_router(child_routes.router)
    app.include_router(progress_routes.router)
    app.include_router(home_program_routes.router)
    app.include_router(patient_detail_routes.router)

    @app.get("/")
    def read_root():
        return {"message": "Therapy API Backend Running"}

    @app.get("/api/health")
    def health(ctx: AppContext = Depends(get_context)):
        response = {
            "success": True,
            "backend": "✅ Running",
            "environment": ctx.settings.app_env,
            "database": "❌ Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["database_name"] = ctx.db.name
            response["collections"] = ctx.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            logger.warning("Health check could not reach MongoDB: %s", e)
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        return response

    return app


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:create_app", host="0.0.0.0", port=port, factory=True)
