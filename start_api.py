#!/usr/bin/env python3
"""
Container entrypoint: wait for Postgres, apply migrations, check the P24
credentials, then hand the process over to uvicorn.
"""
import os
import sys

# 1) Wait for DB
import wait_for_db  # noqa: F401

import structlog
from alembic import command
from alembic.config import Config

from payflow.core.config import settings
from payflow.core.logging import setup_logging
from payflow.api.deps import get_p24_client

setup_logging()
logger = structlog.get_logger("start_api")

# 2) Migrations against the same DATABASE_URL the app uses
alembic_cfg = Config(os.path.join(os.path.dirname(__file__), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")
logger.info("migrations_applied", revision="head")

# 3) Refuse to start with a half-configured gateway (raises ConfigurationError)
p24 = get_p24_client()
logger.info("p24_configured", host=p24.cfg.host, sandbox=p24.cfg.sandbox, pos_id=p24.cfg.pos_id)
if not p24.cfg.sandbox and settings.ENV != "production":
    logger.warning("p24_production_outside_production_env", app_env=settings.ENV)

# 4) uvicorn replaces this process
port = os.getenv("PORT", "8000")
workers = os.getenv("WEB_CONCURRENCY", "1")
os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "payflow.main:app", "--host", "0.0.0.0", "--port", port,
     "--workers", workers, "--no-access-log"],
)
