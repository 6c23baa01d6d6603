# ==============================================================================
# SERVICIO DE SINCRONIZACIÓN - Almacén local ↔ almacén remoto
# ==============================================================================
# El almacén local es la fuente de verdad de la sesión; el remoto es el
# espejo compartido entre usuarios.
#
# ESCRITURA (push):
# - Cada cambio local encola un push (cola + hilo en background), así la
#   operación del usuario nunca espera a la red.
# - Falla → reintentos con backoff exponencial (base * 2**intento, con tope).
# - Agotados los reintentos el registro queda pendingSync=True con syncError;
#   retry_pending() o sync_with_cloud() lo vuelven a intentar.
#
# LECTURA (pull):
# - Descarga registros remotos que no existen localmente (por cotizacion_id)
#   y aplica cambios de estado remotos a registros locales limpios.
#
# CONCILIACIÓN (reconcile):
# - Solo lectura. Compara ambos almacenes y reporta las diferencias.
# ==============================================================================

import copy
import threading
import time
from queue import Empty, Queue
from typing import Any, Dict, List, Optional

from app_cotizaciones.errors import Conflict, SyncFailure, ValidationFailure
from app_cotizaciones.models.entities import (
    Actor,
    Quote,
    QuoteStatus,
    SyncDiscrepancy,
    SyncStatus,
    classify_status,
    next_timestamp,
    normalize_status,
    utc_now_iso,
)
from app_cotizaciones.performance_logger import log_sync_event, profile_function
from app_cotizaciones.repositories.interfaces import (
    IQuoteRepository,
    IRemoteQuoteStore,
    ISettingsRepository,
)
from app_cotizaciones.services.audit_service import AuditService
from app_cotizaciones.services.quote_service import is_visible

# Campos que solo tienen sentido en el almacén local
LOCAL_ONLY_FIELDS = ('id', 'pendingSync', 'syncStatus', 'syncError', 'syncAttempts')

# Metadatos de flujo que se copian al aplicar un estado remoto
WORKFLOW_FIELDS = (
    'submittedAt', 'approvedBy', 'approvalDate', 'rejectedBy', 'rejectionReason',
    'rejectionDate', 'revisedBy', 'revisionComments', 'revisionDate', 'statusHistory',
    'selectedOptions', 'itemComments', 'approvedTotal',
)

PENDING_DELETES_KEY = 'pendingRemoteDeletes'


def _remote_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    payload = copy.deepcopy(record)
    for key in LOCAL_ONLY_FIELDS:
        payload.pop(key, None)
    return payload


def _remote_id_of(record: Dict[str, Any]) -> Optional[str]:
    remote_id = record.get('remoteId') or record.get('id')
    return str(remote_id) if remote_id else None


def _visibility_view(record: Dict[str, Any]) -> Quote:
    """Quote mínima para evaluar visibilidad de un registro crudo."""
    try:
        status = normalize_status(record.get('status'))
    except ValidationFailure:
        status = QuoteStatus.DRAFT
    return Quote(
        status=status,
        createdBy=record.get('createdBy') or '',
        vendorEmail=record.get('vendorEmail') or '',
    )


class SyncService:
    """
    Sincronización entre el almacén local y el remoto.

    Uso:
        sync = SyncService(quote_repo, remote, company_id='TECNOPHONE')
        sync.schedule_push(quote.id)   # no bloquea
        report = sync.reconcile(actor)
    """

    def __init__(
        self,
        quote_repo: IQuoteRepository,
        remote: IRemoteQuoteStore,
        audit_service: Optional[AuditService] = None,
        settings_repo: Optional[ISettingsRepository] = None,
        company_id: str = '',
        max_retries: int = 5,
        backoff: float = 0.5,
        backoff_max: float = 30.0,
        enabled: bool = True
    ):
        """
        Args:
            quote_repo: Almacén local
            remote: Almacén remoto (HTTP o espejo JSON)
            audit_service: Auditoría de fallas definitivas (opcional)
            settings_repo: Guarda lastSyncAt y borrados pendientes (opcional)
            company_id: Empresa cuyos registros se sincronizan
            max_retries: Intentos de push antes de dejar el registro pendiente
            backoff: Espera base entre intentos (segundos)
            backoff_max: Espera máxima entre intentos (segundos)
            enabled: False desactiva el hilo de sincronización
        """
        self.quote_repo = quote_repo
        self.remote = remote
        self.audit_service = audit_service
        self.settings_repo = settings_repo
        self.company_id = company_id
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self.backoff_max = backoff_max
        self.enabled = enabled

        self._queue: Queue = Queue()
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._stop = threading.Event()
        self._sync_lock = threading.Lock()

    # =========================================================================
    # HILO DE SINCRONIZACIÓN
    # =========================================================================

    def _start_worker(self) -> None:
        """Inicia el hilo de push si no está corriendo."""
        with self._worker_lock:
            if self._worker is None or not self._worker.is_alive():
                self._stop.clear()
                self._worker = threading.Thread(
                    target=self._worker_loop, name='cotizaciones-sync', daemon=True
                )
                self._worker.start()

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                if item is None:
                    break
                kind, value = item
                if kind == 'push':
                    self._push_with_retry(value)
                elif kind == 'delete':
                    self._delete_with_retry(value)
            except Exception as e:
                # El hilo no debe morir; el registro sigue pendiente
                log_sync_event('WORKER_ERROR', '', f'{type(e).__name__}: {e}', 'ERROR')
            finally:
                self._queue.task_done()

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.backoff * (2 ** attempt), self.backoff_max)

    def schedule_push(self, quote_id: int) -> None:
        """Encola el push de una cotización (no bloquea)."""
        if not self.enabled:
            return
        self._start_worker()
        self._queue.put(('push', quote_id))

    def schedule_remote_delete(self, remote_id: str) -> None:
        """Encola el borrado de una copia remota."""
        if self.settings_repo is not None:
            pending = self.settings_repo.get(PENDING_DELETES_KEY, [])
            if remote_id not in pending:
                self.settings_repo.set(PENDING_DELETES_KEY, pending + [remote_id])
        if not self.enabled:
            return
        self._start_worker()
        self._queue.put(('delete', remote_id))

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """
        Espera a que la cola se vacíe.

        Returns:
            True si no quedó trabajo pendiente dentro del timeout
        """
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def shutdown(self, timeout: float = 2.0) -> None:
        """Detiene el hilo (los registros no enviados quedan pendingSync)."""
        self._stop.set()
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._queue.put(None)
            worker.join(timeout)

    # =========================================================================
    # PUSH
    # =========================================================================

    def _push_once(self, quote_id: int) -> bool:
        """
        Un intento de push.

        Returns:
            True si el registro quedó sincronizado, False si no existe o
            cambió durante el envío (su propio push ya está encolado)

        Raises:
            SyncFailure: Si el almacén remoto falla
        """
        record = self.quote_repo.get(quote_id)
        if record is None:
            return False
        cotizacion_id = record.get('cotizacion_id', '')
        payload = _remote_payload(record)

        try:
            remote_id = record.get('remoteId')
            if remote_id:
                self.remote.update(remote_id, payload)
            else:
                remote_id = self.remote.add(payload)
                self.quote_repo.update(quote_id, {'remoteId': remote_id})
        except SyncFailure as e:
            attempts = int(record.get('syncAttempts') or 0) + 1
            self.quote_repo.update(quote_id, {
                'pendingSync': True,
                'syncStatus': SyncStatus.PENDING.value,
                'syncError': e.message,
                'syncAttempts': attempts,
            })
            log_sync_event('PUSH_FAIL', cotizacion_id, f'intento {attempts}: {e.message}', 'WARNING')
            raise

        cleared = self.quote_repo.update_if_unchanged(quote_id, {
            'pendingSync': False,
            'syncStatus': SyncStatus.SYNCED.value,
            'syncError': None,
            'syncAttempts': 0,
            'lastSyncAt': utc_now_iso(),
        }, record.get('updatedAt'))
        log_sync_event('PUSH_OK', cotizacion_id, f'remoteId={remote_id}')
        return cleared

    def push_now(self, quote_id: int) -> bool:
        """
        Push síncrono de una cotización (un solo intento).

        Returns:
            True si quedó sincronizada
        """
        try:
            return self._push_once(quote_id)
        except SyncFailure:
            return False

    def _push_with_retry(self, quote_id: int) -> bool:
        last_error: Optional[SyncFailure] = None
        for attempt in range(self.max_retries):
            try:
                return self._push_once(quote_id)
            except SyncFailure as e:
                last_error = e
                if not e.retryable or attempt == self.max_retries - 1:
                    break
                delay = self._backoff_delay(attempt)
                log_sync_event('RETRY', str(quote_id), f'en {delay:.2f}s')
                if self._stop.wait(delay):
                    break

        record = self.quote_repo.get(quote_id) or {}
        cotizacion_id = record.get('cotizacion_id', str(quote_id))
        message = last_error.message if last_error else 'desconocido'
        log_sync_event('GIVE_UP', cotizacion_id, message, 'ERROR')
        if self.audit_service is not None:
            self.audit_service.log_sync_failure(
                cotizacion_id, message, int(record.get('syncAttempts') or 0)
            )
        return False

    def _delete_once(self, remote_id: str) -> None:
        self.remote.delete(remote_id)
        if self.settings_repo is not None:
            pending = self.settings_repo.get(PENDING_DELETES_KEY, [])
            if remote_id in pending:
                self.settings_repo.set(
                    PENDING_DELETES_KEY, [r for r in pending if r != remote_id]
                )
        log_sync_event('DELETE_OK', '', f'remoteId={remote_id}')

    def _delete_with_retry(self, remote_id: str) -> bool:
        for attempt in range(self.max_retries):
            try:
                self._delete_once(remote_id)
                return True
            except SyncFailure as e:
                log_sync_event('DELETE_FAIL', '', f'remoteId={remote_id}: {e.message}', 'WARNING')
                if not e.retryable or self._stop.wait(self._backoff_delay(attempt)):
                    break
        return False

    @profile_function(name="Reintentar pendientes")
    def retry_pending(self) -> Dict[str, int]:
        """
        Reintenta todos los registros marcados pendingSync y los borrados
        remotos pendientes (un intento cada uno).

        Returns:
            {'pushed': n, 'failed': m}
        """
        pushed = failed = 0
        for record in self.quote_repo.filter(lambda r: r.get('pendingSync', True)):
            if self.push_now(record['id']):
                pushed += 1
            else:
                failed += 1

        if self.settings_repo is not None:
            for remote_id in list(self.settings_repo.get(PENDING_DELETES_KEY, [])):
                try:
                    self._delete_once(remote_id)
                except SyncFailure:
                    failed += 1
        return {'pushed': pushed, 'failed': failed}

    # =========================================================================
    # PULL
    # =========================================================================

    def _owner_filter(self, actor: Actor) -> Optional[str]:
        if any(actor.has(p) for p in ('view_all_quotes', 'view_pending_quotes', 'view_approved_quotes')):
            return None
        return actor.email

    def _visible_remote(self, actor: Actor) -> List[Dict[str, Any]]:
        records = self.remote.list(self.company_id, owner=self._owner_filter(actor))
        return [r for r in records if is_visible(_visibility_view(r), actor)]

    @profile_function(name="Descargar cotizaciones")
    def pull(self, actor: Actor) -> Dict[str, Any]:
        """
        Descarga del remoto lo que falta localmente.

        - Registros nuevos (por cotizacion_id) se guardan ya sincronizados
        - Registros locales sin cambios pendientes toman el estado remoto
        - Registros remotos con estado no reconocido se omiten y se reportan
        - Si el registro local cambia entre la lectura y la escritura (una
          transición concurrente) el estado remoto no se aplica y se reporta
          en 'conflicts'; la próxima descarga lo vuelve a evaluar

        Returns:
            {'added': n, 'updated': n, 'skipped': [cotizacion_id, ...],
             'conflicts': [cotizacion_id, ...]}

        Raises:
            SyncFailure: Si el almacén remoto no responde
        """
        added = updated = 0
        skipped: List[str] = []
        conflicts: List[str] = []

        for record in self._visible_remote(actor):
            cotizacion_id = record.get('cotizacion_id')
            if not cotizacion_id:
                skipped.append(_remote_id_of(record) or '?')
                continue
            try:
                status = normalize_status(record.get('status'))
            except ValidationFailure:
                skipped.append(cotizacion_id)
                log_sync_event('PULL_SKIP', cotizacion_id,
                               f'estado no reconocido: {record.get("status")!r}', 'WARNING')
                continue

            local = self.quote_repo.find_by_cotizacion_id(cotizacion_id)
            remote_id = _remote_id_of(record)

            if local is None:
                data = dict(record, id=None, status=status.value)
                try:
                    quote = Quote.from_dict(data)
                except ValidationFailure as e:
                    skipped.append(cotizacion_id)
                    log_sync_event('PULL_SKIP', cotizacion_id, e.message, 'WARNING')
                    continue
                quote.remoteId = remote_id
                quote.pendingSync = False
                quote.syncStatus = SyncStatus.SYNCED.value
                quote.syncError = None
                quote.lastSyncAt = utc_now_iso()
                self.quote_repo.add(quote.to_dict())
                added += 1
                continue

            if local.get('pendingSync'):
                continue
            changes: Dict[str, Any] = {}
            if not local.get('remoteId') and remote_id:
                changes['remoteId'] = remote_id
            if classify_status(local.get('status')) != status.value:
                changes['status'] = status.value
                for key in WORKFLOW_FIELDS:
                    if key in record:
                        changes[key] = copy.deepcopy(record[key])
                changes['updatedAt'] = next_timestamp(local.get('updatedAt'))
                changes['lastSyncAt'] = utc_now_iso()
            if not changes:
                continue
            if self.quote_repo.update_if_unchanged(local['id'], changes, local.get('updatedAt')):
                if 'status' in changes:
                    updated += 1
            else:
                conflicts.append(cotizacion_id)
                log_sync_event('PULL_CONFLICT', cotizacion_id,
                               'el registro local cambió durante la descarga', 'WARNING')

        if skipped or added or updated or conflicts:
            log_sync_event('PULL', '', f'added={added} updated={updated} '
                                       f'skipped={len(skipped)} conflicts={len(conflicts)}')
        return {'added': added, 'updated': updated, 'skipped': skipped, 'conflicts': conflicts}

    @profile_function(name="Sincronizar con la nube")
    def sync_with_cloud(self, actor: Actor) -> Dict[str, Any]:
        """
        Sincronización completa: reintenta pendientes y descarga novedades.

        Raises:
            Conflict: Si ya hay una sincronización en curso
            SyncFailure: Si la descarga falla
        """
        if not self._sync_lock.acquire(blocking=False):
            raise Conflict('Ya hay una sincronización en curso')
        try:
            pushed = self.retry_pending()
            pulled = self.pull(actor)
            last_sync = utc_now_iso()
            if self.settings_repo is not None:
                self.settings_repo.set('lastSyncAt', last_sync)
        finally:
            self._sync_lock.release()

        if self.audit_service is not None:
            self.audit_service.log_sync_completed(actor.email, pushed['pushed'], pulled['added'])
        return {'success': True, 'push': pushed, 'pull': pulled, 'lastSyncAt': last_sync}

    # =========================================================================
    # CONCILIACIÓN Y ESTADÍSTICAS
    # =========================================================================

    @profile_function(name="Conciliar almacenes")
    def reconcile(self, actor: Actor) -> SyncDiscrepancy:
        """
        Compara local y remoto para lo visible por el actor. Solo lectura.

        Raises:
            SyncFailure: Si el almacén remoto no responde
        """
        local_records = [
            r for r in self.quote_repo.get_all() if is_visible(_visibility_view(r), actor)
        ]
        remote_records = self._visible_remote(actor)

        local_by_id = {r.get('cotizacion_id'): r for r in local_records if r.get('cotizacion_id')}
        remote_by_id = {r.get('cotizacion_id'): r for r in remote_records if r.get('cotizacion_id')}

        mismatches = []
        for cotizacion_id in sorted(set(local_by_id) & set(remote_by_id)):
            local_status = classify_status(local_by_id[cotizacion_id].get('status'))
            remote_status = classify_status(remote_by_id[cotizacion_id].get('status'))
            if local_status != remote_status:
                mismatches.append({
                    'cotizacion_id': cotizacion_id,
                    'local': local_status,
                    'remote': remote_status,
                })

        report = SyncDiscrepancy(
            local_count=len(local_records),
            remote_count=len(remote_records),
            missing_remote=sorted(set(local_by_id) - set(remote_by_id)),
            missing_local=sorted(set(remote_by_id) - set(local_by_id)),
            status_mismatches=mismatches,
            pending_sync=sorted(
                cid for cid, r in local_by_id.items() if r.get('pendingSync')
            ),
        )
        if not report.is_consistent:
            log_sync_event(
                'RECONCILE', '',
                f'solo_local={len(report.missing_remote)} solo_remoto={len(report.missing_local)} '
                f'estados_distintos={len(report.status_mismatches)}',
                'WARNING',
            )
        return report

    def get_sync_stats(self) -> Dict[str, Any]:
        """
        Returns:
            {'total', 'synced', 'pending', 'errors', 'lastSync'}
        """
        records = self.quote_repo.get_all()
        pending = [r for r in records if r.get('pendingSync', True)]
        return {
            'total': len(records),
            'synced': len(records) - len(pending),
            'pending': len(pending),
            'errors': len([r for r in pending if r.get('syncError')]),
            'lastSync': self.settings_repo.get('lastSyncAt') if self.settings_repo else None,
        }
