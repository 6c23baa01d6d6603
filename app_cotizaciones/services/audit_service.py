# ==============================================================================
# SERVICIO DE AUDITORÍA
# ==============================================================================
# Centraliza toda la lógica de registro de auditoría.
# Formatea mensajes humanizados y categoriza eventos.
# ==============================================================================

from typing import Any, Dict, List, Optional

from app_cotizaciones.repositories.interfaces import IAuditRepository

# Nombres legibles de los estados para los mensajes
STATUS_LABELS = {
    'draft': 'Borrador',
    'pending_approval': 'Pendiente de aprobación',
    'approved': 'Aprobada',
    'rejected': 'Rechazada',
    'revision': 'En revisión',
}


class AuditService:
    """
    Servicio para registro y consulta de auditoría.

    Centraliza:
    - Registro de eventos con mensajes humanizados
    - Categorización de eventos (COTIZACION, FLUJO, SYNC, USUARIO, COMPRA, PROVEEDOR, SISTEMA)
    - Búsqueda y filtrado de logs

    Todo cambio de estado de una cotización deja un log de FLUJO.
    """

    TYPE_COTIZACION = 'COTIZACION'
    TYPE_FLUJO = 'FLUJO'
    TYPE_SYNC = 'SYNC'
    TYPE_USUARIO = 'USUARIO'
    TYPE_COMPRA = 'COMPRA'
    TYPE_PROVEEDOR = 'PROVEEDOR'
    TYPE_SISTEMA = 'SISTEMA'

    def __init__(self, audit_repo: IAuditRepository):
        """
        Args:
            audit_repo: Repositorio de auditoría
        """
        self.audit_repo = audit_repo

    # =========================================================================
    # REGISTRO DE EVENTOS
    # =========================================================================

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str = '',
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Registra un evento de auditoría genérico.

        Args:
            log_type: Tipo de evento
            user: Usuario que realizó la acción
            message: Mensaje descriptivo humanizado
            related_id: ID relacionado (cotizacion_id, email)
            details: Detalles adicionales
        """
        self.audit_repo.log(log_type, user, message, related_id, details)

    def log_quote_created(self, user: str, cotizacion_id: str, cliente: str, total: float) -> None:
        message = f"Cotización {cotizacion_id} creada por {user} - Cliente: {cliente} - Total: $ {total:,.0f}"
        self.log(self.TYPE_COTIZACION, user, message, cotizacion_id,
                 {'cliente': cliente, 'total': total})

    def log_quote_updated(self, user: str, cotizacion_id: str, fields: List[str]) -> None:
        message = f"Cotización {cotizacion_id} editada por {user} ({', '.join(fields)})"
        self.log(self.TYPE_COTIZACION, user, message, cotizacion_id, {'fields': fields})

    def log_quote_deleted(self, user: str, cotizacion_id: str) -> None:
        self.log(self.TYPE_COTIZACION, user, f"Cotización {cotizacion_id} eliminada por {user}",
                 cotizacion_id)

    def log_quote_duplicated(self, user: str, source_id: str, new_id: str) -> None:
        message = f"Cotización {source_id} duplicada como {new_id} por {user}"
        self.log(self.TYPE_COTIZACION, user, message, new_id, {'source': source_id})

    def log_status_change(
        self,
        user: str,
        cotizacion_id: str,
        old_status: str,
        new_status: str,
        reason: Optional[str] = None
    ) -> None:
        """
        Registra un cambio de estado del flujo de aprobación.

        Args:
            user: Usuario que cambió el estado
            cotizacion_id: Cotización afectada
            old_status: Estado anterior
            new_status: Nuevo estado
            reason: Motivo de rechazo o comentarios de revisión
        """
        old_label = STATUS_LABELS.get(old_status, old_status)
        new_label = STATUS_LABELS.get(new_status, new_status)
        message = f"Cotización {cotizacion_id}: {old_label} → {new_label} por {user}"
        if reason:
            message += f" - Motivo: {reason}"
        details = {'from': old_status, 'to': new_status}
        if reason:
            details['reason'] = reason
        self.log(self.TYPE_FLUJO, user, message, cotizacion_id, details)

    def log_sync_failure(self, cotizacion_id: str, error: str, attempts: int) -> None:
        message = f"Cotización {cotizacion_id} sin sincronizar tras {attempts} intentos: {error}"
        self.log(self.TYPE_SYNC, 'sistema', message, cotizacion_id,
                 {'error': error, 'attempts': attempts})

    def log_sync_completed(self, user: str, pushed: int, pulled: int) -> None:
        message = f"Sincronización ejecutada por {user} - Enviadas: {pushed} - Descargadas: {pulled}"
        self.log(self.TYPE_SYNC, user, message, '', {'pushed': pushed, 'pulled': pulled})

    def log_user_login(self, email: str) -> None:
        self.log(self.TYPE_USUARIO, email, f"{email} inició sesión", email)

    def log_user_logout(self, email: str) -> None:
        self.log(self.TYPE_USUARIO, email, f"{email} cerró sesión", email)

    def log_user_registered(self, email: str, role: str) -> None:
        self.log(self.TYPE_USUARIO, email, f"{email} se registró con rol {role}", email,
                 {'role': role})

    def log_user_role_changed(self, admin: str, email: str, old_role: str, new_role: str) -> None:
        message = f"Rol de {email}: {old_role} → {new_role} por {admin}"
        self.log(self.TYPE_USUARIO, admin, message, email, {'from': old_role, 'to': new_role})

    def log_user_status_changed(self, admin: str, email: str, active: bool) -> None:
        state = 'activado' if active else 'desactivado'
        self.log(self.TYPE_USUARIO, admin, f"Usuario {email} {state} por {admin}", email,
                 {'isActive': active})

    def log_user_deleted(self, admin: str, email: str, role: str) -> None:
        self.log(self.TYPE_USUARIO, admin, f"Usuario {email} ({role}) eliminado por {admin}",
                 email, {'role': role})

    def log_purchase_price(self, user: str, cotizacion_id: str, item_index: int, price: float) -> None:
        message = f"Precio final de compra del ítem {item_index + 1} en {cotizacion_id}: $ {price:,.0f} por {user}"
        self.log(self.TYPE_COMPRA, user, message, cotizacion_id,
                 {'item_index': item_index, 'final_price': price})

    def log_purchase_completed(self, user: str, cotizacion_id: str) -> None:
        self.log(self.TYPE_COMPRA, user, f"Compra de {cotizacion_id} finalizada por {user}",
                 cotizacion_id)

    def log_provider_change(self, user: str, action: str, provider_id: str, name: str) -> None:
        self.log(self.TYPE_PROVEEDOR, user, f"Proveedor {name} {action} por {user}", provider_id,
                 {'action': action})

    def log_system(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.log(self.TYPE_SISTEMA, 'sistema', message, '', details)

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def get_quote_history(self, cotizacion_id: str) -> List[Dict[str, Any]]:
        """Eventos de una cotización (más recientes primero)."""
        return self.audit_repo.get_logs_by_related_id(cotizacion_id)

    def search(
        self,
        query: str = '',
        log_type: Optional[str] = None,
        user: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        return self.audit_repo.search_logs(query, log_type, user)

    def get_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.audit_repo.get_recent_logs(limit)
