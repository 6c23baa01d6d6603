# ==============================================================================
# REPOSITORIO DE PROVEEDORES
# ==============================================================================
# Encapsula todo el acceso a proveedores.json
# Los proveedores se almacenan como diccionario indexado por su ID local
# (provider-<epoch ms>-<sufijo>).
# ==============================================================================

import os
from typing import Any, Dict, List, Optional

from .base import DictRepository


class ProviderRepository(DictRepository):
    """
    Catálogo local de proveedores.

    Formato de datos en proveedores.json:
    {
        "provider-1718000000000-a1b2c3d4e": {
            "id": "provider-1718000000000-a1b2c3d4e",
            "name": "Mayorista Andino",
            "category": "Tecnología",
            "isActive": true,
            "remoteId": null,
            ...
        }
    }
    """

    def __init__(self, base_path: str):
        file_path = os.path.join(base_path, 'proveedores.json')
        super().__init__(file_path)

    def list(self) -> List[Dict[str, Any]]:
        """Todos los proveedores (activos e inactivos)."""
        return list(self.get_all().values())

    def save(self, record: Dict[str, Any]) -> None:
        """Inserta o reemplaza un proveedor (clave: record['id'])."""
        self.update(record['id'], record)

    def find_by_remote_id(self, remote_id: str) -> Optional[Dict[str, Any]]:
        if not remote_id:
            return None
        for record in self.get_all().values():
            if record.get('remoteId') == remote_id:
                return record
        return None
