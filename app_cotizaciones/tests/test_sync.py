import dataclasses
import os

import pytest

from app_cotizaciones.app_container import AppContainer
from app_cotizaciones.errors import Conflict, SyncFailure
from app_cotizaciones.models.entities import QuoteStatus, next_timestamp
from app_cotizaciones.repositories import JsonRemoteQuoteStore
from app_cotizaciones import performance_logger
from app_cotizaciones.tests.conftest import REVISOR, VENDEDOR, add_user, sample_row


class FlakyRemote:
    """Espejo JSON que falla mientras `failing` sea verdadero."""

    def __init__(self, inner, failing=False, retryable=True):
        self.inner = inner
        self.failing = failing
        self.retryable = retryable
        self.calls = 0
        self.before_write = None

    def _maybe_fail(self):
        self.calls += 1
        if self.failing:
            raise SyncFailure('backend caído', retryable=self.retryable)
        if self.before_write is not None:
            self.before_write()

    def add(self, record):
        self._maybe_fail()
        return self.inner.add(record)

    def update(self, remote_id, changes):
        self._maybe_fail()
        self.inner.update(remote_id, changes)

    def delete(self, remote_id):
        self._maybe_fail()
        self.inner.delete(remote_id)

    def list(self, company_id, owner=None):
        return self.inner.list(company_id, owner)

    def get(self, remote_id):
        return self.inner.get(remote_id)


@pytest.fixture
def remote(config):
    return FlakyRemote(JsonRemoteQuoteStore(config.data_dir))


@pytest.fixture
def live(config, remote):
    """Contenedor con el hilo de sincronización activo."""
    AppContainer.reset_instance()
    c = AppContainer(dataclasses.replace(config, sync_enabled=True), remote=remote)
    yield c
    AppContainer.reset_instance()


@pytest.fixture
def offline(config, remote):
    """Contenedor sin hilo: los push se disparan a mano."""
    AppContainer.reset_instance()
    c = AppContainer(config, remote=remote)
    yield c
    AppContainer.reset_instance()


def _users(container):
    return add_user(container, VENDEDOR, 'vendedor'), add_user(container, REVISOR, 'revisor')


def _new_quote(container, vendedor, **extra):
    data = {'clienteName': 'Acme', 'rows': [sample_row()]}
    data.update(extra)
    return container.quote_service.create_quote(data, vendedor)


def test_background_push_marks_synced(live, remote):
    vendedor, revisor = _users(live)
    quote = _new_quote(live, vendedor)
    live.quote_service.submit_for_approval(quote.id, vendedor)
    assert live.sync_service.wait_idle(5)

    record = live.quote_repo.get(quote.id)
    assert record['pendingSync'] is False
    assert record['syncStatus'] == 'synced'
    assert record['remoteId']
    stored = remote.inner.get(record['remoteId'])
    assert stored['status'] == 'pending_approval'
    assert stored['cotizacion_id'] == quote.cotizacion_id
    assert 'pendingSync' not in stored


def test_failed_push_keeps_local_change_pending(live, remote, config):
    vendedor, _ = _users(live)
    remote.failing = True

    quote = _new_quote(live, vendedor)
    assert live.sync_service.wait_idle(5)

    record = live.quote_repo.get(quote.id)
    assert record['status'] == 'draft'
    assert record['pendingSync'] is True
    assert record['syncError'] == 'backend caído'
    assert record['syncAttempts'] == config.sync_max_retries
    assert remote.calls == config.sync_max_retries

    with open(performance_logger.SYNC_LOG, encoding='utf-8') as f:
        assert 'GIVE_UP' in f.read()
    sync_logs = live.audit_service.search(log_type='SYNC')
    assert sync_logs and sync_logs[0]['related_id'] == quote.cotizacion_id

    remote.failing = False
    assert live.sync_service.retry_pending() == {'pushed': 1, 'failed': 0}
    record = live.quote_repo.get(quote.id)
    assert record['pendingSync'] is False
    assert record['syncError'] is None


def test_non_retryable_failure_stops_immediately(live, remote):
    vendedor, _ = _users(live)
    remote.failing = True
    remote.retryable = False
    _new_quote(live, vendedor)
    assert live.sync_service.wait_idle(5)
    assert remote.calls == 1


def test_change_during_push_stays_pending(offline, remote):
    vendedor, _ = _users(offline)
    quote = _new_quote(offline, vendedor)

    def concurrent_edit():
        remote.before_write = None
        record = offline.quote_repo.get(quote.id)
        offline.quote_repo.update(quote.id, {
            'notes': 'editado durante el envío',
            'updatedAt': next_timestamp(record['updatedAt']),
        })

    remote.before_write = concurrent_edit
    assert offline.sync_service.push_now(quote.id) is False

    record = offline.quote_repo.get(quote.id)
    assert record['pendingSync'] is True
    assert record['remoteId']
    assert record['notes'] == 'editado durante el envío'

    assert offline.sync_service.push_now(quote.id) is True
    assert remote.inner.get(record['remoteId'])['notes'] == 'editado durante el envío'


def test_disabled_sync_schedules_nothing(offline, remote):
    vendedor, _ = _users(offline)
    quote = _new_quote(offline, vendedor)
    assert offline.sync_service.wait_idle(0.1)
    assert remote.calls == 0
    assert offline.quote_repo.get(quote.id)['pendingSync'] is True
    assert offline.sync_service.get_sync_stats()['pending'] == 1


def test_reconcile_is_read_only_and_idempotent(offline, remote):
    vendedor, revisor = _users(offline)
    first = _new_quote(offline, vendedor)
    second = _new_quote(offline, vendedor)
    offline.sync_service.push_now(first.id)

    before = offline.quote_repo.get_all()
    report = offline.sync_service.reconcile(revisor)
    again = offline.sync_service.reconcile(revisor)

    assert report.to_dict() == again.to_dict()
    assert offline.quote_repo.get_all() == before
    assert report.missing_remote == [second.cotizacion_id]
    assert report.missing_local == []
    assert report.pending_sync == [second.cotizacion_id]
    assert not report.is_consistent


def test_reconcile_and_pull_resolve_status_mismatch(offline, remote):
    vendedor, revisor = _users(offline)
    quote = _new_quote(offline, vendedor)
    offline.sync_service.push_now(quote.id)
    remote_id = offline.quote_repo.get(quote.id)['remoteId']

    remote.inner.update(remote_id, {'status': 'sent_for_approval'})
    report = offline.sync_service.reconcile(revisor)
    assert report.status_mismatches == [{
        'cotizacion_id': quote.cotizacion_id, 'local': 'draft', 'remote': 'pending_approval',
    }]

    result = offline.sync_service.pull(revisor)
    assert result['updated'] == 1
    assert offline.quote_service.get_quote(quote.id).status is QuoteStatus.PENDING_APPROVAL
    assert offline.sync_service.reconcile(revisor).is_consistent


def test_pull_adds_remote_only_records_and_skips_unknown_status(offline, remote):
    vendedor, revisor = _users(offline)
    remote.inner.add({'cotizacion_id': 'COT-REMOTO-1', 'status': 'pending', 'companyId': 'TECNOPHONE',
                      'createdBy': vendedor.email, 'clienteName': 'Remoto', 'rows': [sample_row()]})
    remote.inner.add({'cotizacion_id': 'COT-REMOTO-2', 'status': 'archivada', 'companyId': 'TECNOPHONE',
                      'createdBy': vendedor.email})

    result = offline.sync_service.pull(revisor)
    assert result['added'] == 1
    assert result['skipped'] == ['COT-REMOTO-2']

    local = offline.quote_service.get_by_cotizacion_id('COT-REMOTO-1')
    assert local.status is QuoteStatus.PENDING_APPROVAL
    assert local.pendingSync is False
    assert local.remoteId

    assert offline.sync_service.pull(revisor)['added'] == 0


def test_pull_respects_visibility(offline, remote):
    vendedor, _ = _users(offline)
    remote.inner.add({'cotizacion_id': 'COT-AJENA', 'status': 'draft', 'companyId': 'TECNOPHONE',
                      'createdBy': 'alguien@tecnophone.com'})
    assert offline.sync_service.pull(vendedor)['added'] == 0


def test_sync_with_cloud_runs_once_at_a_time(offline, remote):
    vendedor, revisor = _users(offline)
    _new_quote(offline, vendedor)

    offline.sync_service._sync_lock.acquire()
    try:
        with pytest.raises(Conflict):
            offline.sync_service.sync_with_cloud(revisor)
    finally:
        offline.sync_service._sync_lock.release()

    result = offline.sync_service.sync_with_cloud(revisor)
    assert result['push'] == {'pushed': 1, 'failed': 0}
    assert offline.settings_repo.get('lastSyncAt') == result['lastSyncAt']
    assert offline.sync_service.get_sync_stats()['pending'] == 0


def test_deleted_draft_is_removed_remotely(offline, remote):
    vendedor, _ = _users(offline)
    quote = _new_quote(offline, vendedor)
    offline.sync_service.push_now(quote.id)
    remote_id = offline.quote_repo.get(quote.id)['remoteId']

    offline.quote_service.delete_quote(quote.id, vendedor)
    assert offline.settings_repo.get('pendingRemoteDeletes') == [remote_id]

    offline.sync_service.retry_pending()
    assert remote.inner.get(remote_id) is None
    assert offline.settings_repo.get('pendingRemoteDeletes') == []


def test_sync_log_written_under_configured_dir(offline, config):
    vendedor, _ = _users(offline)
    quote = _new_quote(offline, vendedor)
    offline.sync_service.push_now(quote.id)
    assert os.path.dirname(performance_logger.SYNC_LOG) == os.path.join(
        os.path.dirname(config.data_dir), 'logs')


def _approved_remotely(offline, remote, vendedor, revisor):
    """Cotización enviada y sincronizada cuyo remoto ya está aprobado."""
    quote = _new_quote(offline, vendedor)
    offline.quote_service.submit_for_approval(quote.id, vendedor)
    assert offline.sync_service.push_now(quote.id) is True
    remote_id = offline.quote_repo.get(quote.id)['remoteId']
    remote.inner.update(remote_id, {'status': 'approved', 'approvedBy': revisor.email})
    return quote


def test_pull_does_not_overwrite_concurrent_transition(offline, remote, monkeypatch):
    vendedor, revisor = _users(offline)
    quote = _approved_remotely(offline, remote, vendedor, revisor)
    original = offline.quote_repo.find_by_cotizacion_id

    def read_then_reject(cotizacion_id):
        stale = original(cotizacion_id)
        monkeypatch.setattr(offline.quote_repo, 'find_by_cotizacion_id', original)
        offline.quote_service.reject(quote.id, revisor, 'precio alto')
        return stale

    monkeypatch.setattr(offline.quote_repo, 'find_by_cotizacion_id', read_then_reject)
    result = offline.sync_service.pull(revisor)

    assert result['conflicts'] == [quote.cotizacion_id]
    assert result['updated'] == 0
    local = offline.quote_service.get_quote(quote.id)
    assert local.status is QuoteStatus.REJECTED
    assert local.statusHistory[-1]['to'] == 'rejected'
    assert local.pendingSync is True


def test_transition_fails_when_pull_writes_first(offline, remote, monkeypatch):
    vendedor, revisor = _users(offline)
    quote = _approved_remotely(offline, remote, vendedor, revisor)
    original = offline.quote_repo.update_if_unchanged
    pulled = {}

    def pull_then_write(quote_id, changes, updated_at):
        monkeypatch.setattr(offline.quote_repo, 'update_if_unchanged', original)
        pulled.update(offline.sync_service.pull(revisor))
        return original(quote_id, changes, updated_at)

    monkeypatch.setattr(offline.quote_repo, 'update_if_unchanged', pull_then_write)
    with pytest.raises(Conflict):
        offline.quote_service.reject(quote.id, revisor, 'precio alto')

    assert pulled['updated'] == 1
    assert pulled['conflicts'] == []
    local = offline.quote_service.get_quote(quote.id)
    assert local.status is QuoteStatus.APPROVED
    assert local.rejectionReason is None
    assert 'rejected' not in [h['to'] for h in local.statusHistory]
