"""
Application startup checks and logging configuration.
"""

import logging
from typing import List, Tuple

import sqlalchemy as sa
from sqlalchemy import text

from core.config import Settings, settings
from core.database import Base, engine

logger = logging.getLogger(__name__)

REQUIRED_TABLES = [
    "loyalty_accounts",
    "loyalty_ledger_entries",
    "loyalty_expiration_offsets",
    "loyalty_unlocked_achievements",
]


def configure_logging(app_settings: Settings = settings):
    """Configure root logging from settings"""
    logging.basicConfig(
        level=getattr(logging, app_settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class StartupValidator:
    """Validates application startup requirements"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def check_database_connection(self) -> bool:
        """Check database connectivity"""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection successful")
            return True
        except sa.exc.SQLAlchemyError as e:
            self.errors.append(f"Database connection failed: {str(e)}")
            return False

    def check_required_tables(self) -> bool:
        """Create or report missing loyalty tables"""
        try:
            existing_tables = sa.inspect(engine).get_table_names()
        except sa.exc.SQLAlchemyError as e:
            self.warnings.append(f"Could not check database tables: {str(e)}")
            return True

        missing_tables = [t for t in REQUIRED_TABLES if t not in existing_tables]
        if not missing_tables:
            return True

        if settings.is_production:
            self.errors.append(
                f"Missing database tables: {', '.join(missing_tables)}. "
                "Run migrations with: alembic upgrade head"
            )
            return False

        Base.metadata.create_all(bind=engine)
        self.warnings.append(f"Created missing tables: {', '.join(missing_tables)}")
        return True

    def validate_all(self) -> Tuple[bool, List[str], List[str]]:
        """Run all validation checks"""
        checks = [
            ("Database Connection", self.check_database_connection),
            ("Database Tables", self.check_required_tables),
        ]

        all_passed = True
        for check_name, check_func in checks:
            logger.info(f"Running check: {check_name}")
            if not check_func():
                all_passed = False

        return all_passed, self.errors, self.warnings


def run_startup_checks():
    """Run all startup validation checks"""
    logger.info(f"Starting loyalty service (environment: {settings.environment})")

    validator = StartupValidator()
    passed, errors, warnings = validator.validate_all()

    for warning in warnings:
        logger.warning(f"Startup warning: {warning}")
    for error in errors:
        logger.error(f"Startup error: {error}")

    if not passed and settings.is_production:
        raise RuntimeError("Cannot start in production with startup errors")
    elif not passed:
        logger.warning("Starting in development mode despite errors")
    else:
        logger.info("All startup checks passed")

    return passed, warnings
