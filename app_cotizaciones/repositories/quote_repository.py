# ==============================================================================
# REPOSITORIO DE COTIZACIONES (almacén local)
# ==============================================================================
# Encapsula todo el acceso a cotizaciones.json
# Formato:
# {
#     "version": 1,
#     "next_id": 3,
#     "cotizaciones": [{"id": 1, "cotizacion_id": "COT-...", ...}, ...]
# }
# Los IDs locales son secuenciales y nunca se reutilizan.
# ==============================================================================

import copy
import os
from typing import Any, Callable, Dict, List, Optional

from .base import BaseRepository

DATA_VERSION = 1
COLLECTION = 'cotizaciones'


class LocalQuoteRepository(BaseRepository):
    """
    Almacén local de cotizaciones.

    Guarda los registros como diccionarios tal como los recibe; la
    normalización de estados ocurre antes, en los servicios.
    """

    def __init__(self, base_path: str):
        """
        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, f'{COLLECTION}.json')
        super().__init__(file_path)

    def _empty_data(self) -> Dict[str, Any]:
        return {'version': DATA_VERSION, 'next_id': 1, COLLECTION: []}

    def _load(self) -> Dict[str, Any]:
        data = self._read_raw()
        if not isinstance(data, dict):
            data = self._empty_data()
        data.setdefault('version', DATA_VERSION)
        data.setdefault(COLLECTION, [])
        if 'next_id' not in data:
            ids = [r.get('id') or 0 for r in data[COLLECTION]]
            data['next_id'] = max(ids, default=0) + 1
        return data

    # =========================================================================
    # Operaciones CRUD
    # =========================================================================

    def add(self, record: Dict[str, Any]) -> int:
        """
        Inserta una cotización.

        Args:
            record: Datos de la cotización (el campo 'id' se ignora)

        Returns:
            ID local asignado
        """
        with self._file_lock:
            data = self._load()
            new_id = data['next_id']
            stored = copy.deepcopy(record)
            stored['id'] = new_id
            data[COLLECTION].append(stored)
            data['next_id'] = new_id + 1
            self._write_raw(data)
            return new_id

    def get_all(self) -> List[Dict[str, Any]]:
        """Obtiene todas las cotizaciones."""
        return self._load()[COLLECTION]

    def get(self, quote_id: int) -> Optional[Dict[str, Any]]:
        """
        Obtiene una cotización por ID local.

        Returns:
            Registro o None si no existe
        """
        try:
            quote_id = int(quote_id)
        except (TypeError, ValueError):
            return None
        for record in self.get_all():
            if record.get('id') == quote_id:
                return record
        return None

    def update(self, quote_id: int, changes: Dict[str, Any]) -> bool:
        """
        Aplica cambios parciales a una cotización.

        Returns:
            True si el registro existía
        """
        quote_id = int(quote_id)
        with self._file_lock:
            data = self._load()
            for record in data[COLLECTION]:
                if record.get('id') == quote_id:
                    record.update(copy.deepcopy(changes))
                    record['id'] = quote_id
                    self._write_raw(data)
                    return True
            return False

    def update_if_unchanged(self, quote_id: int, changes: Dict[str, Any], updated_at: str) -> bool:
        """
        Aplica cambios solo si updatedAt no cambió desde la lectura.

        Returns:
            True si se aplicaron; False si el registro no existe o fue
            modificado entretanto
        """
        quote_id = int(quote_id)
        with self._file_lock:
            data = self._load()
            for record in data[COLLECTION]:
                if record.get('id') == quote_id:
                    if (record.get('updatedAt') or '') != (updated_at or ''):
                        return False
                    record.update(copy.deepcopy(changes))
                    self._write_raw(data)
                    return True
            return False

    def delete(self, quote_id: int) -> bool:
        """
        Elimina una cotización.

        Returns:
            True si se eliminó
        """
        quote_id = int(quote_id)
        with self._file_lock:
            data = self._load()
            remaining = [r for r in data[COLLECTION] if r.get('id') != quote_id]
            if len(remaining) == len(data[COLLECTION]):
                return False
            data[COLLECTION] = remaining
            self._write_raw(data)
            return True

    # =========================================================================
    # Consultas
    # =========================================================================

    def filter(self, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        """Cotizaciones que cumplen el predicado."""
        return [r for r in self.get_all() if predicate(r)]

    def find_by_cotizacion_id(self, cotizacion_id: str) -> Optional[Dict[str, Any]]:
        """Busca una cotización por su ID de aplicación (COT-...)."""
        if not cotizacion_id:
            return None
        for record in self.get_all():
            if record.get('cotizacion_id') == cotizacion_id:
                return record
        return None

    def count(self) -> int:
        return len(self.get_all())
