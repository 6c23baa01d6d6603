# ==============================================================================
# INTERFACES DE REPOSITORIOS
# ==============================================================================
#
# Contratos (protocolos) que los servicios esperan de la persistencia.
#
# 1. INDEPENDENCIA DE ALMACENAMIENTO
#    - Los servicios dependen de estas interfaces, NO de las clases JSON/HTTP
#    - El almacén remoto puede ser el backend HTTP o el espejo JSON
#
# 2. TESTING
#    - Los tests envuelven un almacén real para simular caídas de red
#
# Los adaptadores guardan el estado tal como lo reciben: la normalización
# de estados es responsabilidad de los servicios.
# ==============================================================================

from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class IQuoteRepository(Protocol):
    """
    Almacén local de cotizaciones (colección 'cotizaciones').
    """

    def add(self, record: Dict[str, Any]) -> int:
        """Inserta un registro y retorna el ID local asignado."""
        ...

    def get_all(self) -> List[Dict[str, Any]]:
        """Obtiene todos los registros."""
        ...

    def get(self, quote_id: int) -> Optional[Dict[str, Any]]:
        """Obtiene un registro por ID local."""
        ...

    def update(self, quote_id: int, changes: Dict[str, Any]) -> bool:
        """Aplica cambios parciales a un registro."""
        ...

    def update_if_unchanged(self, quote_id: int, changes: Dict[str, Any], updated_at: str) -> bool:
        """Aplica cambios solo si updatedAt sigue siendo updated_at."""
        ...

    def delete(self, quote_id: int) -> bool:
        """Elimina un registro."""
        ...

    def filter(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        """Registros que cumplen el predicado."""
        ...

    def find_by_cotizacion_id(self, cotizacion_id: str) -> Optional[Dict[str, Any]]:
        """Busca por ID de aplicación."""
        ...


@runtime_checkable
class IRemoteQuoteStore(Protocol):
    """
    Almacén remoto de cotizaciones.

    Toda falla de red o del backend se reporta como SyncFailure.
    """

    def add(self, record: Dict[str, Any]) -> str:
        """Crea el registro remoto y retorna su ID remoto."""
        ...

    def list(self, company_id: str, owner: Optional[str] = None) -> List[Dict[str, Any]]:
        """Registros de la empresa (opcionalmente de un dueño)."""
        ...

    def get(self, remote_id: str) -> Optional[Dict[str, Any]]:
        """Obtiene un registro remoto."""
        ...

    def update(self, remote_id: str, changes: Dict[str, Any]) -> None:
        """Actualiza un registro remoto."""
        ...

    def delete(self, remote_id: str) -> None:
        """Elimina un registro remoto."""
        ...


@runtime_checkable
class IUserRepository(Protocol):
    """
    Perfiles de usuario indexados por email.
    """

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Carga todos los perfiles."""
        ...

    def get_profile(self, email: str) -> Optional[Dict[str, Any]]:
        """Obtiene un perfil por email."""
        ...

    def profile_exists(self, email: str) -> bool:
        ...

    def create_profile(self, email: str, profile: Dict[str, Any]) -> bool:
        """Crea un perfil nuevo."""
        ...

    def update_profile(self, email: str, updates: Dict[str, Any]) -> bool:
        """Actualiza campos de un perfil."""
        ...

    def delete_profile(self, email: str) -> bool:
        """Elimina un perfil."""
        ...


@runtime_checkable
class IAuditRepository(Protocol):
    """
    Interfaz para el repositorio de auditoría.
    """

    def load(self) -> List[Dict[str, Any]]:
        """Carga todos los logs."""
        ...

    def log(
        self,
        log_type: str,
        user: str,
        message: str,
        related_id: str = '',
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Registra un evento de auditoría."""
        ...

    def get_logs_by_related_id(self, related_id: str) -> List[Dict[str, Any]]:
        ...

    def search_logs(
        self,
        query: str = '',
        log_type: Optional[str] = None,
        user: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        ...

    def get_recent_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        ...


@runtime_checkable
class ISettingsRepository(Protocol):
    """
    Almacén clave/valor de configuración de la aplicación.
    """

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...
