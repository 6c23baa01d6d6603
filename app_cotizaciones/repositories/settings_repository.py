# ==============================================================================
# REPOSITORIO DE CONFIGURACIÓN
# ==============================================================================
# Encapsula todo el acceso a configuracion.json
# Almacén clave/valor de la aplicación: lastSyncAt, localStorage_migrated, ...
# ==============================================================================

import os
from typing import Any, Dict

from .base import DictRepository


class SettingsRepository(DictRepository):
    """
    Almacén clave/valor.

    Formato de datos en configuracion.json:
    {
        "lastSyncAt": "2024-05-01T12:00:00+00:00",
        "localStorage_migrated": true
    }
    """

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'configuracion.json')
        super().__init__(file_path)

    def load(self) -> Dict[str, Any]:
        return self.get_all()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Obtiene un valor.

        Args:
            key: Clave
            default: Valor si la clave no existe

        Returns:
            Valor almacenado o default
        """
        return self.load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Guarda un valor."""
        with self._transaction() as data:
            data[key] = value

    def remove(self, key: str) -> bool:
        return self.delete(key) is not None
