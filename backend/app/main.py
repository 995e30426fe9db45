from fastapi import FastAPI

from core.config import settings
from app.startup import configure_logging, run_startup_checks

# ========== Loyalty ==========
import modules.loyalty.models  # noqa: F401  registers the loyalty tables
from modules.loyalty import loyalty_router
from modules.loyalty.tasks import start_expiration_scheduler, stop_expiration_scheduler

configure_logging(settings)

app = FastAPI(
    title="Loyalty & Tier Progression API",
    description="""
    Points ledger, tier benefits and achievements for restaurant customers.

    * **Points** - Earn from spend with tier multipliers, redeem and expire
    * **Tiers** - Balance-based tier status and benefits
    * **Achievements** - One-time unlocks with bonus points
    """,
    version="1.0.0",
)

app.include_router(loyalty_router)


# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup"""
    run_startup_checks()
    if settings.scheduler_enabled:
        await start_expiration_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown"""
    if settings.scheduler_enabled:
        await stop_expiration_scheduler()


@app.get("/")
def read_root():
    return {"message": "Loyalty service is running"}


@app.get("/health")
def health():
    return {"status": "ok"}
