"""
Background scheduler for ledger maintenance.

Handles:
- Cascade replay: re-run reward steps that failed or never ran (hourly)
- Nightly reconciliation: balance drift report and conservation check (02:00 UTC)
"""
import os
import atexit
import logging

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Flask app reference for job context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs when ENABLE_SCHEDULER is set. Only one gunicorn process should
    run it.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING') or not app.config.get('ENABLE_SCHEDULER'):
        logger.info('[Scheduler] Disabled (set ENABLE_SCHEDULER=true)')
        return

    # Prevent multiple scheduler instances across gunicorn workers
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.cron import CronTrigger

    try:
        _scheduler = BackgroundScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Prevent concurrent runs
                'misfire_grace_time': 3600
            }
        )

        _scheduler.add_job(
            run_cascade_replay,
            trigger=CronTrigger(minute=15),
            id='cascade_replay',
            name='Replay failed reward cascade steps',
            replace_existing=True
        )

        _scheduler.add_job(
            run_nightly_reconciliation,
            trigger=CronTrigger(hour=2, minute=0),
            id='nightly_reconciliation',
            name='Reconcile balances and verify conservation',
            replace_existing=True
        )

        _scheduler.start()
        os.environ['SCHEDULER_RUNNING'] = 'true'
        logger.info('[Scheduler] Started: cascade replay hourly at :15, reconciliation daily at 02:00 UTC')

        atexit.register(shutdown_scheduler)
    except Exception as e:
        logger.error(f'[Scheduler] Failed to initialize: {e}')


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_cascade_replay():
    """Re-run cascade steps with no run record or an error record."""
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    with _flask_app.app_context():
        try:
            from ..services.reconciliation import ReconciliationService
            result = ReconciliationService().replay_cascades()
            logger.info(
                f"[Scheduler] Cascade replay: {len(result['replayed'])} replayed, "
                f"{len(result['still_failing'])} still failing"
            )
        except Exception as e:
            logger.error(f'[Scheduler] Cascade replay failed: {e}')


def run_nightly_reconciliation():
    """Report balance drift and check conservation. Does not repair."""
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    with _flask_app.app_context():
        try:
            from ..services.reconciliation import ReconciliationService
            service = ReconciliationService()
            balances = service.reconcile_balances(repair=False)
            conservation = service.verify_conservation()
            logger.info(
                f"[Scheduler] Reconciliation: {len(balances['drifted'])} drifted accounts, "
                f"conservation {'ok' if conservation['balanced'] else 'FAILED'}"
            )
        except Exception as e:
            logger.error(f'[Scheduler] Reconciliation failed: {e}')
