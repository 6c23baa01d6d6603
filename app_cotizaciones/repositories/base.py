# ==============================================================================
# REPOSITORIO BASE - Funcionalidad común para acceso a archivos JSON
# ==============================================================================

import json
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional


class BaseRepository(ABC):
    """
    Clase base abstracta para los almacenes JSON.

    Cada archivo se reescribe completo en cada cambio: se escribe a un
    temporal y se reemplaza con os.replace, de modo que un lector siempre ve
    un snapshot entero (nunca un archivo a medio escribir).
    """

    # Lock global para evitar escrituras concurrentes a archivos
    _file_lock = threading.RLock()

    def __init__(self, file_path: str):
        """
        Inicializa el repositorio con la ruta al archivo JSON.

        Args:
            file_path: Ruta absoluta al archivo JSON de datos
        """
        self.file_path = file_path
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        """Crea el archivo con datos vacíos si no existe."""
        if not os.path.exists(self.file_path):
            self._write_raw(self._empty_data())

    @abstractmethod
    def _empty_data(self) -> Any:
        """
        Estructura de datos vacía para este repositorio.

        Returns:
            Estructura vacía (dict, list, etc.) según el repositorio
        """

    def _read_raw(self) -> Any:
        """
        Lee los datos crudos del archivo JSON.

        Returns:
            Datos parseados del JSON (estructura vacía si el archivo
            no existe o está corrupto)
        """
        with self._file_lock:
            try:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (json.JSONDecodeError, FileNotFoundError):
                return self._empty_data()

    def _write_raw(self, data: Any) -> None:
        """
        Escribe datos al archivo JSON de forma atómica.

        Args:
            data: Datos a serializar y escribir

        Raises:
            OSError: Si hay error de escritura
        """
        with self._file_lock:
            temp_path = self.file_path + '.tmp'
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(temp_path, self.file_path)
            except Exception:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        """
        Lectura-modificación-escritura bajo el lock.

        El bloque recibe los datos y los modifica en sitio; al salir sin
        excepción se persisten.
        """
        with self._file_lock:
            data = self._read_raw()
            yield data
            self._write_raw(data)


class DictRepository(BaseRepository):
    """
    Repositorio base para datos almacenados como diccionario.
    La clave del diccionario es la identidad del registro.

    Ejemplo: users.json -> {"ana@empresa.com": {...}}
    """

    def _empty_data(self) -> Dict:
        return {}

    def get_all(self) -> Dict[str, Any]:
        """Obtiene todos los registros."""
        data = self._read_raw()
        return data if isinstance(data, dict) else {}

    def get_by_id(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """
        Obtiene un registro por su clave.

        Args:
            record_id: Clave del registro

        Returns:
            Datos del registro o None si no existe
        """
        return self.get_all().get(str(record_id))

    def save_all(self, data: Dict[str, Any]) -> None:
        """Guarda todos los registros (reemplazo completo)."""
        self._write_raw(data)

    def update(self, record_id: Any, record_data: Dict[str, Any]) -> None:
        """Reemplaza un registro específico."""
        with self._transaction() as data:
            data[str(record_id)] = record_data

    def delete(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """
        Elimina un registro.

        Returns:
            Datos del registro eliminado o None si no existía
        """
        with self._file_lock:
            data = self.get_all()
            removed = data.pop(str(record_id), None)
            if removed is not None:
                self._write_raw(data)
            return removed


class ListRepository(BaseRepository):
    """
    Repositorio base para datos almacenados como lista.

    Ejemplo: audit.json -> [{...}, {...}]
    """

    def _empty_data(self) -> List:
        return []

    def get_all(self) -> List[Dict[str, Any]]:
        """Obtiene todos los registros."""
        data = self._read_raw()
        return data if isinstance(data, list) else []

    def save_all(self, data: List[Dict[str, Any]]) -> None:
        """Guarda todos los registros (reemplazo completo)."""
        self._write_raw(data)

    def find_all_by(self, field: str, value: Any) -> List[Dict[str, Any]]:
        """
        Busca todos los registros que coinciden con un campo.

        Args:
            field: Nombre del campo
            value: Valor a buscar

        Returns:
            Lista de registros que coinciden
        """
        return [r for r in self.get_all() if r.get(field) == value]
