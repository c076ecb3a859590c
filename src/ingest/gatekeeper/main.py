"""Gatekeeper FastAPI service receiving ROAM webhooks."""

import datetime
import os
from contextlib import asynccontextmanager
from pathlib import Path

import newrelic.agent

from src.utils.config import get_bridge_environment

config_path = Path(__file__).parent / "newrelic.toml"
newrelic.agent.initialize(str(config_path), environment=get_bridge_environment())

from fastapi import FastAPI, HTTPException, Request

from connectors.roam import RoamSubscriptionManager
from src.clients.answer_backend import AnswerBackendClient
from src.clients.roam import RoamClient
from src.clients.vault_storage import VaultStorageClient
from src.credentials.vault import get_credential_vault
from src.database.action_audit import ActionAuditRepository
from src.database.roam_dead_letters import RoamDeadLettersRepository
from src.database.roam_integrations import RoamIntegrationsRepository
from src.database.roam_interactions import RoamInteractionsRepository
from src.database.roam_threads import RoamThreadsRepository
from src.ingest.gatekeeper.admin_routes import router as admin_router
from src.ingest.gatekeeper.routes import router as webhook_router
from src.ingest.gatekeeper.services.dead_letter_writer import DeadLetterWriter
from src.ingest.gatekeeper.services.interaction_recorder import InteractionRecorder
from src.ingest.gatekeeper.services.roam_dispatcher import RoamDispatcher
from src.ingest.gatekeeper.services.webhook_processor import WebhookProcessor
from src.utils.best_effort import BestEffortTasks
from src.utils.config import get_config_value, get_roam_webhook_url
from src.utils.logging import get_logger, get_uvicorn_log_config

logger = get_logger(__name__)

# Allow disabling webhook validation for development/testing
DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION = os.getenv(
    "DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION", ""
).lower() in ("true", "1", "yes")

if DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION:
    logger.warning(
        "⚠️ DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION is enabled. "
        "Webhook signatures will NOT be verified!"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup and handle graceful shutdown."""
    logger.info("🚀 Starting Gatekeeper service...")

    webhook_processor = WebhookProcessor()
    await webhook_processor.initialize()
    pool = webhook_processor.control_db_pool

    roam_client = RoamClient.from_config()
    answer_backend = AnswerBackendClient()
    vault_storage = VaultStorageClient()
    background = BestEffortTasks()

    integrations = RoamIntegrationsRepository(pool)
    threads = RoamThreadsRepository(pool)
    audit = ActionAuditRepository(pool)
    dead_letters = RoamDeadLettersRepository(pool)
    interactions = RoamInteractionsRepository(pool)

    credential_vault = get_credential_vault()
    # Subscription management is optional: without a public URL there is nothing to subscribe
    subscriptions = RoamSubscriptionManager.from_config() if get_roam_webhook_url() else None

    app.state.webhook_processor = webhook_processor
    app.state.roam_client = roam_client
    app.state.credential_vault = credential_vault
    app.state.roam_subscriptions = subscriptions
    app.state.roam_integrations = integrations
    app.state.action_audit = audit
    app.state.roam_dead_letters = dead_letters
    app.state.roam_interactions = interactions
    app.state.roam_interaction_recorder = InteractionRecorder(interactions=interactions, audit=audit)
    app.state.background = background
    app.state.roam_dispatcher = RoamDispatcher(
        roam_client=roam_client,
        answer_backend=answer_backend,
        vault_storage=vault_storage,
        credential_vault=credential_vault,
        integrations=integrations,
        threads=threads,
        audit=audit,
        dead_letter_writer=DeadLetterWriter(dead_letters, audit),
        background=background,
    )
    app.state.dangerously_disable_webhook_validation = DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION

    logger.info("✅ Gatekeeper service startup complete")

    yield

    logger.info("🛑 Shutting down Gatekeeper service...")

    # Let in-flight typing indicators and button clicks finish before their client goes away
    await background.drain()
    await vault_storage.close()
    await answer_backend.close()
    await roam_client.close()
    if subscriptions is not None:
        await subscriptions.client.close()
    await webhook_processor.cleanup()

    logger.info("✅ Gatekeeper service shutdown complete")


app = FastAPI(
    title="ROAM Bridge Gatekeeper",
    description="Verifies ROAM webhooks and relays them to the answer backend",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    try:
        webhook_processor: WebhookProcessor = request.app.state.webhook_processor
        health_status = await webhook_processor.health_check()

        if health_status["status"] == "healthy":
            return health_status
        else:
            raise HTTPException(status_code=503, detail=health_status)

    except HTTPException:
        raise
    except Exception as e:
        newrelic.agent.record_exception()

        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail={"status": "unhealthy", "error": str(e)})


@app.get("/health/live")
async def liveness_check():
    """Liveness check endpoint - checks if the application is alive."""
    # Only fails if the process is completely broken
    return {"status": "alive", "timestamp": datetime.datetime.now().isoformat()}


@app.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check endpoint - checks if the application is ready to serve traffic."""
    try:
        webhook_processor: WebhookProcessor = request.app.state.webhook_processor
        health_status = await webhook_processor.health_check()

        if not hasattr(request.app.state, "roam_dispatcher"):
            health_status["components"]["dispatcher"] = "not initialized"
            health_status["status"] = "unhealthy"

        if health_status["status"] == "healthy":
            return {"status": "ready", "components": health_status}
        else:
            raise HTTPException(
                status_code=503, detail={"status": "not_ready", "components": health_status}
            )

    except HTTPException:
        raise
    except Exception as e:
        newrelic.agent.record_exception()

        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail={"status": "not_ready", "error": str(e)})


app.include_router(webhook_router)
app.include_router(admin_router)


def main():
    """Run the gatekeeper service."""
    import uvicorn

    port = get_config_value("GATEKEEPER_PORT", 8001)

    uvicorn.run(
        "src.ingest.gatekeeper.main:app",
        host="0.0.0.0",
        port=port,
        log_config=get_uvicorn_log_config(),
    )


if __name__ == "__main__":
    main()
