"""
FastAPI server for the civic issue reporting backend

Run: uvicorn server:app --host 0.0.0.0 --port 3000
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env'))

from config import Config  # noqa: E402
from database import Database  # noqa: E402
from handlers.issues import router as issues_router  # noqa: E402
from handlers.payments import router as payments_router  # noqa: E402
from handlers.users import router as users_router  # noqa: E402
from services.checkout_service import CheckoutService  # noqa: E402
from services.identity import FirebaseIdentityVerifier, IdentityVerifier  # noqa: E402
from services.issue_service import IssueService, title_match_policy  # noqa: E402
from services.payment_confirmation import PaymentConfirmationCoordinator  # noqa: E402
from services.payment_ledger import PaymentLedger  # noqa: E402
from services.payment_processor import PaymentProcessor, StripePaymentProcessor  # noqa: E402
from services.user_role_service import UserRoleService  # noqa: E402

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('stripe').setLevel(logging.WARNING)


def create_app(
    database: Optional[Database] = None,
    processor: Optional[PaymentProcessor] = None,
    identity_verifier: Optional[IdentityVerifier] = None,
    config=Config,
) -> FastAPI:
    """
    Build the application. Collaborators default to the configured ones;
    tests pass an in-memory Database and fake processor/verifier.
    """
    database = database or Database(config.DATABASE_URL, echo=config.DATABASE_ECHO)
    if processor is None and config.STRIPE_SECRET_KEY:
        processor = StripePaymentProcessor(config.STRIPE_SECRET_KEY)
    if identity_verifier is None and config.FB_SERVICE_KEY:
        identity_verifier = FirebaseIdentityVerifier.from_service_key(config.FB_SERVICE_KEY)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 Server worker {os.getpid()} starting...")
        for problem in config.validate():
            logger.warning(f"⚠️ CONFIG: {problem}")
        config.log_environment_config()

        database.init()

        issues = IssueService(database, title_match_policy(config.TITLE_MATCH_POLICY))
        users = UserRoleService(database)
        app.state.database = database
        app.state.issue_service = issues
        app.state.user_service = users
        app.state.identity_verifier = identity_verifier
        app.state.checkout_service = None
        app.state.confirmation = None
        if processor is not None:
            app.state.checkout_service = CheckoutService(
                processor,
                client_domain=config.CLIENT_DOMAIN,
                boost_price_cents=config.BOOST_PRICE_CENTS,
                subscription_price_cents=config.SUBSCRIPTION_PRICE_CENTS,
                currency=config.PAYMENT_CURRENCY,
            )
            app.state.confirmation = PaymentConfirmationCoordinator(
                processor, PaymentLedger(database), issues, users
            )
        else:
            logger.warning("⚠️ PAYMENTS_DISABLED: no payment processor configured")

        logger.info(f"✅ Worker {os.getpid()} initialized successfully")

        yield

        logger.info(f"🔄 Server worker {os.getpid()} shutting down...")
        database.shutdown()

    app = FastAPI(
        title="Civic Issue Reporting Backend",
        description="Issue reporting, upvotes, status timeline and payment reconciliation",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.CLIENT_DOMAIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        db = app.state.database if hasattr(app.state, "database") else None
        database_ok = bool(db and db.is_initialized and db.test_connection())
        return {
            "status": "healthy" if database_ok else "degraded",
            "service": "civic-issue-backend",
            "database": database_ok,
            "payments": getattr(app.state, "confirmation", None) is not None,
        }

    app.include_router(payments_router)
    app.include_router(issues_router)
    app.include_router(users_router)
    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=Config.PORT, log_level=Config.LOG_LEVEL.lower())
