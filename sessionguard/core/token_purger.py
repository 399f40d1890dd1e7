"""
Background scheduler that purges expired refresh tokens.
"""
import logging
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sessionguard.core.config import settings
from sessionguard.core.refresh_tokens import RefreshTokenService
from sessionguard.db.session import get_session_local

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "purge_expired_tokens"

# Global scheduler instance
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler() -> BackgroundScheduler:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(timezone="UTC")
    return _scheduler


def start_scheduler():
    """Start the token purge scheduler."""
    scheduler = get_scheduler()
    if not scheduler.running:
        # Daily sweep, 01:00 UTC unless configured otherwise
        scheduler.add_job(
            purge_expired_tokens_job,
            trigger=CronTrigger(
                hour=settings.TOKEN_PURGE_CRON_HOUR,
                minute=settings.TOKEN_PURGE_CRON_MINUTE,
            ),
            id=PURGE_JOB_ID,
            name="Purge expired refresh tokens",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info(
            f"Token purge scheduler started "
            f"(daily at {settings.TOKEN_PURGE_CRON_HOUR:02d}:{settings.TOKEN_PURGE_CRON_MINUTE:02d} UTC)"
        )


def stop_scheduler():
    """Stop the token purge scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Token purge scheduler stopped")
    _scheduler = None


def purge_expired_tokens_job() -> int:
    """
    Delete every refresh token past its expiry.
    Runs in the scheduler thread with its own database session.

    Returns:
        Number of rows removed, 0 when the purge failed
    """
    SessionLocal = get_session_local()
    db: Session = SessionLocal()
    try:
        deleted = RefreshTokenService(db).purge_expired_tokens()
        if deleted == 0:
            logger.debug("Token purge ran - no expired refresh tokens")
        return deleted
    except SQLAlchemyError as e:
        logger.error(f"Error in purge_expired_tokens_job: {str(e)}", exc_info=True)
        db.rollback()
        return 0
    finally:
        db.close()
