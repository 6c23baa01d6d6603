# ==============================================================================
# REPOSITORIO DE AUDITORÍA
# ==============================================================================
# Encapsula todo el acceso a audit.json
# La auditoría se almacena como lista, más reciente primero
# ==============================================================================

import os
from typing import Any, Dict, List, Optional

from app_cotizaciones.models.entities import AuditLog
from .base import ListRepository


class AuditRepository(ListRepository):
    """
    Repositorio del log de auditoría.

    Formato de datos en audit.json:
    [
        {
            "type": "FLUJO",
            "user": "revisor@tecnophone.com",
            "message": "Cotización COT-... aprobada",
            "timestamp": "2024-01-01 10:00:00",
            "related_id": "COT-...",
            "details": {"from": "pending_approval", "to": "approved"}
        }
    ]
    """

    # Límite de registros para evitar archivos muy grandes
    MAX_LOGS = 10000

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'audit.json')
        super().__init__(file_path)

    def load(self) -> List[Dict[str, Any]]:
        """
        Carga todos los logs.

        Returns:
            Lista de logs (más recientes primero)
        """
        return self.get_all()

    def save(self, logs: List[Dict[str, Any]]) -> None:
        """Guarda los logs aplicando el límite de registros."""
        self.save_all(logs[:self.MAX_LOGS])

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str = '',
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Registra un nuevo evento de auditoría.

        Args:
            log_type: Tipo de evento (COTIZACION, FLUJO, SYNC, USUARIO, COMPRA, PROVEEDOR, SISTEMA)
            user: Usuario que realizó la acción
            message: Mensaje descriptivo humanizado
            related_id: ID relacionado (cotizacion_id, email)
            details: Detalles adicionales
        """
        entry = AuditLog(
            type=log_type,
            user=user or 'sistema',
            message=message,
            related_id=str(related_id or ''),
            details=details or {},
        )
        with self._file_lock:
            logs = self.get_all()
            logs.insert(0, entry.to_dict())
            self.save(logs)

    def get_logs_by_type(self, log_type: str) -> List[Dict[str, Any]]:
        return self.find_all_by('type', log_type)

    def get_logs_by_related_id(self, related_id: str) -> List[Dict[str, Any]]:
        return self.find_all_by('related_id', related_id)

    def search_logs(
        self,
        query: str = '',
        log_type: Optional[str] = None,
        user: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Búsqueda de logs con filtros combinables.

        Args:
            query: Texto a buscar en usuario, mensaje e ID relacionado
            log_type: Filtrar por tipo
            user: Filtrar por usuario

        Returns:
            Lista de logs que coinciden
        """
        logs = self.load()
        if log_type:
            logs = [log for log in logs if log.get('type') == log_type]
        if user:
            logs = [log for log in logs if log.get('user') == user]
        if query:
            q = query.lower()
            logs = [
                log for log in logs
                if any(q in str(log.get(k, '')).lower() for k in ('user', 'message', 'related_id'))
            ]
        return logs

    def get_recent_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.load()[:limit]
