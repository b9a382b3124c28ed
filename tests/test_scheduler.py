"""
Tests for the background maintenance scheduler.
"""
from unittest.mock import patch, MagicMock

from holyloy.utils import scheduler


class TestInitScheduler:

    def test_disabled_under_testing(self, app):
        with patch('apscheduler.schedulers.background.BackgroundScheduler') as mock_scheduler:
            scheduler.init_scheduler(app)
        mock_scheduler.assert_not_called()
        assert scheduler._flask_app is app


class TestScheduledJobs:

    def test_cascade_replay_runs_service(self, app):
        scheduler._flask_app = app
        service = MagicMock()
        service.replay_cascades.return_value = {'replayed': [], 'still_failing': []}
        with patch('holyloy.services.reconciliation.ReconciliationService', return_value=service):
            scheduler.run_cascade_replay()
        service.replay_cascades.assert_called_once_with()

    def test_cascade_replay_logs_failure(self, app):
        scheduler._flask_app = app
        with patch('holyloy.services.reconciliation.ReconciliationService',
                   side_effect=RuntimeError('db down')), \
                patch.object(scheduler.logger, 'error') as mock_error:
            scheduler.run_cascade_replay()
        assert 'db down' in mock_error.call_args[0][0]

    def test_nightly_reconciliation_reports_only(self, app):
        scheduler._flask_app = app
        service = MagicMock()
        service.reconcile_balances.return_value = {'drifted': []}
        service.verify_conservation.return_value = {'balanced': True}
        with patch('holyloy.services.reconciliation.ReconciliationService', return_value=service):
            scheduler.run_nightly_reconciliation()
        service.reconcile_balances.assert_called_once_with(repair=False)
        service.verify_conservation.assert_called_once_with()

    def test_no_app_is_noop(self):
        scheduler._flask_app = None
        with patch.object(scheduler.logger, 'error') as mock_error:
            scheduler.run_cascade_replay()
        mock_error.assert_called_once()
