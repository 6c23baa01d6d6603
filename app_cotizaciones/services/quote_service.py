# ==============================================================================
# SERVICIO DE COTIZACIONES - Flujo de aprobación
# ==============================================================================
# Único dueño del campo `status`. Toda lectura de estados pasa por
# normalize_status() y toda escritura usa el enum canónico.
#
# GRAFO DEL FLUJO:
#
#   draft ──enviar──► pending_approval ──aprobar──► approved
#                        │      ▲     └──rechazar──► rejected
#              revisión  │      │ reenviar
#                        ▼      │
#                       revision
#
# approved y rejected son terminales; un ciclo nuevo se inicia duplicando la
# cotización (queda en draft).
#
# ORDEN DE VERIFICACIÓN EN transition():
#   1. Lock por cotización (ocupado → Conflict)
#   2. Existencia (NotFound)
#   3. expected_status distinto al actual (Conflict)
#   4. Arista del grafo (InvalidTransition)
#   5. Permiso y propiedad (Forbidden)
#   6. Validación de datos (ValidationFailure)
# ==============================================================================

import secrets
import string
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from app_cotizaciones.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailure,
)
from app_cotizaciones.models.entities import (
    EDITABLE_FIELDS,
    STATUS_FILTERS,
    Actor,
    Quote,
    QuoteStatus,
    SyncStatus,
    group_rows,
    next_timestamp,
    normalize_status,
    parse_rows,
)
from app_cotizaciones.performance_logger import profile_function
from app_cotizaciones.repositories.interfaces import IQuoteRepository
from app_cotizaciones.services.audit_service import AuditService


# Arista (desde, hacia) → permiso requerido
TRANSITIONS = {
    (QuoteStatus.DRAFT, QuoteStatus.PENDING_APPROVAL): 'send_for_approval',
    (QuoteStatus.PENDING_APPROVAL, QuoteStatus.APPROVED): 'approve_quotes',
    (QuoteStatus.PENDING_APPROVAL, QuoteStatus.REJECTED): 'reject_quotes',
    (QuoteStatus.PENDING_APPROVAL, QuoteStatus.REVISION): 'request_revisions',
    (QuoteStatus.REVISION, QuoteStatus.PENDING_APPROVAL): 'send_for_approval',
}

# Campos que solo escribe SyncService
SYNC_OWNED_FIELDS = frozenset(['remoteId', 'lastSyncAt', 'syncError', 'syncAttempts'])

_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_cotizacion_id() -> str:
    """ID de aplicación: COT-<epoch ms>-<9 alfanuméricos>."""
    suffix = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"COT-{int(time.time() * 1000)}-{suffix}"


def is_transition_allowed(current: Any, target: Any) -> bool:
    """Verifica si la arista existe en el grafo (estados crudos o canónicos)."""
    return (normalize_status(current), normalize_status(target)) in TRANSITIONS


def allowed_targets(current: Any) -> List[QuoteStatus]:
    """Estados alcanzables desde `current`."""
    current = normalize_status(current)
    return [to for (frm, to) in TRANSITIONS if frm == current]


def is_visible(quote: Quote, actor: Actor) -> bool:
    """
    Regla de visibilidad de una cotización para un actor.

    - view_all_quotes: todas
    - view_pending_quotes: además las pendientes
    - view_approved_quotes: además las aprobadas
    - resto: las propias (creador o vendedor)
    """
    if actor.has('view_all_quotes'):
        return True
    if actor.has('view_pending_quotes') and quote.status == QuoteStatus.PENDING_APPROVAL:
        return True
    if actor.has('view_approved_quotes') and quote.status == QuoteStatus.APPROVED:
        return True
    return quote.owned_by(actor.email)


class QuoteLockRegistry:
    """
    Locks no bloqueantes por cotización.

    Una segunda operación sobre la misma cotización mientras otra está en
    curso falla con Conflict en vez de esperar.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._held: Set[int] = set()

    @contextmanager
    def hold(self, quote_id: Any) -> Iterator[None]:
        try:
            key = int(quote_id)
        except (TypeError, ValueError):
            raise NotFound(f'Cotización {quote_id} no encontrada')
        with self._guard:
            if key in self._held:
                raise Conflict(f'La cotización {key} está siendo modificada por otro usuario')
            self._held.add(key)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(key)


class QuoteService:
    """
    Servicio del ciclo de vida de las cotizaciones.

    Responsabilidades:
    - Crear, editar, duplicar y eliminar cotizaciones
    - Aplicar el grafo de estados con permisos por rol
    - Listar y filtrar por estado normalizado
    - Programar la sincronización remota de cada cambio
    """

    def __init__(
        self,
        quote_repo: IQuoteRepository,
        audit_service: Optional[AuditService] = None,
        sync_service=None,
        company_id: str = ''
    ):
        """
        Args:
            quote_repo: Almacén local
            audit_service: Servicio de auditoría (opcional)
            sync_service: Servicio de sincronización (opcional)
            company_id: Empresa que se estampa en cada cotización
        """
        self.quote_repo = quote_repo
        self.audit_service = audit_service
        self.sync_service = sync_service
        self.company_id = company_id
        self._locks = QuoteLockRegistry()

    # =========================================================================
    # UTILIDADES INTERNAS
    # =========================================================================

    def _load(self, quote_id: int) -> Quote:
        record = self.quote_repo.get(quote_id)
        if record is None:
            raise NotFound(f'Cotización {quote_id} no encontrada')
        return Quote.from_dict(record)

    def _persist(self, quote: Quote, loaded_at: str) -> None:
        """
        Guarda la cotización si nadie la modificó desde que se cargó.

        La descarga del remoto escribe sin el lock de la cotización; su
        cambio gana y esta operación falla con Conflict.
        """
        changes = {
            k: v for k, v in quote.to_dict().items()
            if k not in SYNC_OWNED_FIELDS
        }
        if not self.quote_repo.update_if_unchanged(quote.id, changes, loaded_at):
            raise Conflict(
                f'La cotización {quote.cotizacion_id} cambió mientras se modificaba; recárgala'
            )

    def _schedule_sync(self, quote_id: int) -> None:
        if self.sync_service is not None:
            self.sync_service.schedule_push(quote_id)

    def _audit(self, method: str, *args, **kwargs) -> None:
        if self.audit_service is not None:
            getattr(self.audit_service, method)(*args, **kwargs)

    @staticmethod
    def _mark_pending(quote: Quote) -> None:
        quote.updatedAt = next_timestamp(quote.updatedAt)
        quote.pendingSync = True
        quote.syncStatus = SyncStatus.PENDING.value

    @staticmethod
    def _validate_for_submission(quote: Quote) -> None:
        quote.recalculate_totals()
        if not quote.rows:
            raise ValidationFailure('La cotización debe tener al menos un ítem')
        if quote.totalGeneral <= 0:
            raise ValidationFailure('El total de la cotización debe ser mayor a cero')

    @staticmethod
    def _clean_item_comments(quote: Quote, raw: Any) -> Dict[str, str]:
        """Comentarios por ítem: claves de group_rows, textos vacíos se descartan."""
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValidationFailure('Los comentarios por ítem deben ser un objeto {ítem: comentario}')
        groups = group_rows(quote.rows)
        unknown = sorted(set(raw) - set(groups))
        if unknown:
            raise ValidationFailure(f'Ítems desconocidos: {", ".join(unknown)}')
        return {
            key: str(text).strip() for key, text in raw.items()
            if text is not None and str(text).strip()
        }

    @staticmethod
    def _clean_selected_options(quote: Quote, raw: Any) -> Dict[str, int]:
        """
        Opción elegida por ítem: {clave_item: posición de la línea}.

        Debe cubrir todos los ítems y cada posición debe pertenecer a su ítem.
        """
        if not isinstance(raw, dict):
            raise ValidationFailure('Las opciones elegidas deben ser un objeto {ítem: línea}')
        groups = group_rows(quote.rows)
        missing = sorted(set(groups) - set(raw))
        if missing:
            raise ValidationFailure(
                f'Selecciona una opción para cada producto: {", ".join(missing)}'
            )
        selected: Dict[str, int] = {}
        for key, value in raw.items():
            if key not in groups:
                raise ValidationFailure(f'Ítem desconocido: {key}')
            try:
                index = int(value)
            except (TypeError, ValueError):
                raise ValidationFailure(f'Opción inválida para {key}: {value!r}')
            if index not in groups[key]:
                raise ValidationFailure(f'La línea {index} no es una opción de {key}')
            selected[key] = index
        return selected

    # =========================================================================
    # CREACIÓN Y EDICIÓN
    # =========================================================================

    @profile_function(name="Crear cotización")
    def create_quote(self, data: Dict[str, Any], actor: Actor) -> Quote:
        """
        Crea una cotización en borrador.

        Solo se toman los campos editables; el estado, los metadatos del
        flujo y los de compras que envíe el llamador se ignoran. Los
        estados distintos de draft se alcanzan únicamente con transition().

        Args:
            data: Campos de la cotización (cliente, vendedor, ítems, TRM, notas)
            actor: Usuario que crea

        Returns:
            Cotización persistida con su ID local

        Raises:
            Forbidden: Si el actor no puede crear cotizaciones
            ValidationFailure: Si los ítems o valores son inválidos
        """
        if not actor.has('create_quotes'):
            raise Forbidden('No tienes permiso para crear cotizaciones', 'create_quotes')

        data = data or {}
        if not isinstance(data, dict):
            raise ValidationFailure('La cotización debe ser un objeto')
        quote = Quote.from_dict({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
        now = next_timestamp()
        quote.status = QuoteStatus.DRAFT
        quote.cotizacion_id = generate_cotizacion_id()
        quote.createdBy = actor.email
        quote.vendorEmail = quote.vendorEmail or actor.email
        quote.vendorName = quote.vendorName or actor.display_name
        quote.companyId = self.company_id
        quote.createdAt = now
        quote.updatedAt = now
        quote.pendingSync = True
        quote.syncStatus = SyncStatus.PENDING.value
        quote.remoteId = None
        quote.syncError = None
        quote.syncAttempts = 0
        quote.recalculate_totals()

        quote.id = self.quote_repo.add(quote.to_dict())

        self._audit('log_quote_created', actor.email, quote.cotizacion_id,
                    quote.clienteName, quote.totalGeneral)
        self._schedule_sync(quote.id)
        return quote

    @profile_function(name="Editar cotización")
    def update_quote(self, quote_id: int, changes: Dict[str, Any], actor: Actor) -> Quote:
        """
        Edita cliente, vendedor, ítems, TRM o notas.

        Raises:
            NotFound: Si no existe
            Forbidden: Si el actor no es dueño con edit_own_quotes
            ValidationFailure: Si la cotización no está en draft/revision,
                se intenta cambiar el estado o un campo no editable
        """
        changes = dict(changes or {})
        if 'status' in changes:
            raise ValidationFailure('El estado solo cambia mediante las acciones del flujo')
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailure(f'Campos no editables: {", ".join(sorted(unknown))}')

        with self._locks.hold(quote_id):
            quote = self._load(quote_id)
            loaded_at = quote.updatedAt
            if not (actor.has('edit_own_quotes') and quote.owned_by(actor.email)):
                raise Forbidden('Solo el dueño puede editar la cotización', 'edit_own_quotes')
            if not quote.is_editable:
                raise ValidationFailure(
                    f'La cotización en estado {quote.status.value} no se puede editar'
                )

            for key, value in changes.items():
                if key == 'rows':
                    quote.rows = parse_rows(value)
                elif key == 'trmGlobal':
                    try:
                        quote.trmGlobal = float(value or 0)
                    except (TypeError, ValueError):
                        raise ValidationFailure(f'TRM inválida: {value!r}')
                else:
                    setattr(quote, key, value or '')
            quote.recalculate_totals()
            self._mark_pending(quote)
            self._persist(quote, loaded_at)

        self._audit('log_quote_updated', actor.email, quote.cotizacion_id, sorted(changes))
        self._schedule_sync(quote.id)
        return quote

    def duplicate_quote(self, quote_id: int, actor: Actor) -> Quote:
        """
        Inicia un ciclo nuevo a partir de una cotización existente.

        La copia queda en draft, con nuevo ID local y nuevo cotizacion_id,
        sin metadatos de flujo ni de sincronización.
        """
        if not actor.has('duplicate_quotes'):
            raise Forbidden('No tienes permiso para duplicar cotizaciones', 'duplicate_quotes')
        source = self._load(quote_id)
        if not is_visible(source, actor):
            raise Forbidden('No tienes acceso a esta cotización', 'view_own_quotes')

        duplicate = self.create_quote({
            'clienteName': f"{source.clienteName} (Copia)",
            'vendorName': source.vendorName,
            'vendorEmail': source.vendorEmail,
            'rows': [row.to_dict() for row in source.rows],
            'trmGlobal': source.trmGlobal,
            'notes': source.notes,
        }, actor)
        self._audit('log_quote_duplicated', actor.email, source.cotizacion_id, duplicate.cotizacion_id)
        return duplicate

    def delete_quote(self, quote_id: int, actor: Actor) -> bool:
        """
        Elimina una cotización en borrador.

        La copia remota (si existe) se elimina en la siguiente sincronización.
        """
        with self._locks.hold(quote_id):
            quote = self._load(quote_id)
            if not (quote.owned_by(actor.email) or actor.has('manage_users')):
                raise Forbidden('Solo el dueño puede eliminar la cotización')
            if quote.status != QuoteStatus.DRAFT:
                raise ValidationFailure('Solo se pueden eliminar cotizaciones en borrador')
            deleted = self.quote_repo.delete(quote_id)

        if deleted:
            self._audit('log_quote_deleted', actor.email, quote.cotizacion_id)
            if quote.remoteId and self.sync_service is not None:
                self.sync_service.schedule_remote_delete(quote.remoteId)
        return deleted

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def get_quote(self, quote_id: int) -> Quote:
        """
        Raises:
            NotFound: Si la cotización no existe
        """
        return self._load(quote_id)

    def get_by_cotizacion_id(self, cotizacion_id: str) -> Quote:
        record = self.quote_repo.find_by_cotizacion_id(cotizacion_id)
        if record is None:
            raise NotFound(f'Cotización {cotizacion_id} no encontrada')
        return Quote.from_dict(record)

    def _all_quotes(self) -> List[Quote]:
        return [Quote.from_dict(r) for r in self.quote_repo.get_all()]

    @staticmethod
    def _sorted(quotes: List[Quote]) -> List[Quote]:
        return sorted(quotes, key=lambda q: q.updatedAt or '', reverse=True)

    def list_quotes(self, actor: Actor) -> List[Quote]:
        """Cotizaciones visibles para el actor, más recientes primero."""
        return self._sorted([q for q in self._all_quotes() if is_visible(q, actor)])

    def list_by_status(self, status_filter: str = 'all', actor: Optional[Actor] = None) -> List[Quote]:
        """
        Lista cotizaciones por filtro de estado.

        Args:
            status_filter: all, pending, approved, rejected, revision, draft
                (también se acepta cualquier literal de estado conocido)
            actor: Si se indica, solo las visibles para él

        Returns:
            Cotizaciones ordenadas por updatedAt descendente

        Raises:
            ValidationFailure: Si el filtro no es reconocido
        """
        key = (status_filter or 'all').strip().lower()
        if key in STATUS_FILTERS:
            wanted = STATUS_FILTERS[key]
        else:
            wanted = frozenset([normalize_status(key)])

        quotes = self._all_quotes()
        if wanted is not None:
            quotes = [q for q in quotes if q.status in wanted]
        if actor is not None:
            quotes = [q for q in quotes if is_visible(q, actor)]
        return self._sorted(quotes)

    def search_by_client(self, prefix: str, actor: Actor) -> List[Quote]:
        """Búsqueda por prefijo del cliente (sin distinguir mayúsculas)."""
        prefix = (prefix or '').strip().lower()
        return [
            q for q in self.list_quotes(actor)
            if q.clienteName.lower().startswith(prefix)
        ]

    def get_stats(self, actor: Optional[Actor] = None) -> Dict[str, int]:
        """Conteo por estado canónico más el total."""
        quotes = self.list_quotes(actor) if actor is not None else self._all_quotes()
        stats = {
            status.value: 0 for status in QuoteStatus
            if status != QuoteStatus.SENT_FOR_APPROVAL
        }
        for quote in quotes:
            stats[quote.status.value] += 1
        stats['total'] = len(quotes)
        return stats

    # =========================================================================
    # FLUJO DE APROBACIÓN
    # =========================================================================

    @profile_function(name="Transición de estado")
    def transition(
        self,
        quote_id: int,
        target_status: Any,
        actor: Actor,
        reason: Optional[str] = None,
        expected_status: Any = None,
        selected_options: Optional[Dict[str, Any]] = None,
        item_comments: Optional[Dict[str, Any]] = None
    ) -> Quote:
        """
        Aplica un cambio de estado del flujo.

        Args:
            quote_id: ID local
            target_status: Estado destino (cualquier literal aceptado)
            actor: Usuario que ejecuta la acción
            reason: Motivo (rechazo) o comentarios (revisión)
            expected_status: Estado que el actor vio; si cambió → Conflict
            selected_options: Solo al aprobar: {ítem: posición de la línea elegida}
            item_comments: Decisión del revisor: {ítem: comentario}

        Returns:
            Cotización actualizada

        Raises:
            Conflict, NotFound, InvalidTransition, Forbidden, ValidationFailure
        """
        target = normalize_status(target_status)
        expected = normalize_status(expected_status) if expected_status is not None else None

        with self._locks.hold(quote_id):
            quote = self._load(quote_id)
            loaded_at = quote.updatedAt
            current = quote.status

            if expected is not None and current != expected:
                raise Conflict(
                    f'La cotización cambió de estado ({expected.value} → {current.value})'
                )

            permission = TRANSITIONS.get((current, target))
            if permission is None:
                raise InvalidTransition(current.value, target.value)

            if not actor.has(permission):
                raise Forbidden(f'Se requiere el permiso {permission}', permission)
            if permission == 'send_for_approval' and not quote.owned_by(actor.email):
                raise Forbidden('Solo el dueño puede enviar la cotización a aprobación', permission)

            reason = (reason or '').strip()
            if target == QuoteStatus.PENDING_APPROVAL:
                self._validate_for_submission(quote)
                if item_comments is not None:
                    raise ValidationFailure('Los comentarios por ítem los deja el revisor')
            comments = self._clean_item_comments(quote, item_comments)
            options: Dict[str, int] = {}
            if selected_options is not None:
                if target != QuoteStatus.APPROVED:
                    raise ValidationFailure('Las opciones por ítem solo se eligen al aprobar')
                options = self._clean_selected_options(quote, selected_options)
            if target == QuoteStatus.REVISION and not (reason or comments):
                raise ValidationFailure('Añade comentarios para orientar la re-cotización')
            if target == QuoteStatus.REJECTED and not reason:
                raise ValidationFailure('Debes indicar el motivo')

            self._mark_pending(quote)
            now = quote.updatedAt
            if target == QuoteStatus.PENDING_APPROVAL:
                quote.submittedAt = now
            else:
                quote.itemComments = comments
                quote.selectedOptions = options
                quote.approvedTotal = None
            if target == QuoteStatus.APPROVED:
                quote.approvedBy = actor.email
                quote.approvalDate = now
                quote.approvedTotal = round(
                    sum(quote.rows[i].pvpTotal for i in options.values()), 2
                ) if options else quote.totalGeneral
            elif target == QuoteStatus.REJECTED:
                quote.rejectedBy = actor.email
                quote.rejectionReason = reason
                quote.rejectionDate = now
            elif target == QuoteStatus.REVISION:
                quote.revisedBy = actor.email
                quote.revisionComments = reason
                quote.revisionDate = now

            entry = {'from': current.value, 'to': target.value, 'by': actor.email, 'at': now}
            if reason:
                entry['reason'] = reason
            if comments:
                entry['itemComments'] = dict(comments)
            quote.statusHistory.append(entry)
            quote.status = target
            self._persist(quote, loaded_at)

        self._audit('log_status_change', actor.email, quote.cotizacion_id,
                    current.value, target.value, reason or None)
        self._schedule_sync(quote.id)
        return quote

    def submit_for_approval(self, quote_id: int, actor: Actor, expected_status: Any = None) -> Quote:
        return self.transition(quote_id, QuoteStatus.PENDING_APPROVAL, actor,
                               expected_status=expected_status)

    def resubmit(self, quote_id: int, actor: Actor) -> Quote:
        """Reenvía una cotización en revisión."""
        return self.transition(quote_id, QuoteStatus.PENDING_APPROVAL, actor,
                               expected_status=QuoteStatus.REVISION)

    def approve(self, quote_id: int, actor: Actor, expected_status: Any = None,
                selected_options: Optional[Dict[str, Any]] = None,
                item_comments: Optional[Dict[str, Any]] = None) -> Quote:
        """
        Aprueba. Si la cotización trae varias opciones por ítem, el revisor
        puede indicar cuál elige en cada uno (selected_options).
        """
        return self.transition(quote_id, QuoteStatus.APPROVED, actor,
                               expected_status=expected_status,
                               selected_options=selected_options,
                               item_comments=item_comments)

    def reject(self, quote_id: int, actor: Actor, reason: str, expected_status: Any = None,
               item_comments: Optional[Dict[str, Any]] = None) -> Quote:
        return self.transition(quote_id, QuoteStatus.REJECTED, actor, reason=reason,
                               expected_status=expected_status, item_comments=item_comments)

    def request_revision(self, quote_id: int, actor: Actor, comments: str = '',
                         expected_status: Any = None,
                         item_comments: Optional[Dict[str, Any]] = None) -> Quote:
        """Devuelve a revisión con comentarios generales y/o por ítem."""
        return self.transition(quote_id, QuoteStatus.REVISION, actor, reason=comments,
                               expected_status=expected_status, item_comments=item_comments)

    # =========================================================================
    # ESCRITURAS AUXILIARES (compras)
    # =========================================================================

    def apply_changes(self, quote_id: int, mutate: Callable[[Quote], None]) -> Quote:
        """
        Aplica una modificación ajena al flujo (seguimiento de compras) bajo
        el lock de la cotización y programa su sincronización.

        `mutate` no puede cambiar el estado.
        """
        with self._locks.hold(quote_id):
            quote = self._load(quote_id)
            loaded_at = quote.updatedAt
            status_before = quote.status
            mutate(quote)
            if quote.status != status_before:
                raise ValidationFailure('El estado solo cambia mediante las acciones del flujo')
            self._mark_pending(quote)
            self._persist(quote, loaded_at)
        self._schedule_sync(quote.id)
        return quote
