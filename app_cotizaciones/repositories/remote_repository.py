# ==============================================================================
# ALMACÉN REMOTO DE COTIZACIONES
# ==============================================================================
# Dos implementaciones del mismo contrato (IRemoteQuoteStore):
#
# - HttpRemoteQuoteStore: backend REST (COTIZ_REMOTE_URL), una colección
#   por instancia ('cotizaciones' o 'proveedores')
#     POST   {base}/<colección>              -> {"id": "<remote_id>"}
#     GET    {base}/<colección>?companyId=&owner=
#     GET    {base}/<colección>/<remote_id>
#     PATCH  {base}/<colección>/<remote_id>
#     DELETE {base}/<colección>/<remote_id>
#
# - JsonRemoteQuoteStore: espejo en remote_cotizaciones.json (o
#   remote_proveedores.json), usado cuando no hay URL configurada.
#
# Cualquier falla se reporta como SyncFailure; timeouts y errores de conexión
# son reintentables, los 4xx no.
# ==============================================================================

import copy
import os
import uuid
from typing import Any, Dict, List, Optional

import requests

from app_cotizaciones.errors import SyncFailure
from .base import DictRepository


def _matches_owner(record: Dict[str, Any], owner: Optional[str]) -> bool:
    if not owner:
        return True
    owner = owner.lower()
    return owner in (
        (record.get('createdBy') or '').lower(),
        (record.get('vendorEmail') or '').lower(),
    )


class HttpRemoteQuoteStore:
    """
    Cliente REST del backend remoto.

    Cada llamada lleva timeout; el token (si existe) viaja como Bearer.
    """

    def __init__(self, base_url: str, token: str = '', timeout: float = 10.0,
                 collection: str = 'cotizaciones'):
        self.base_url = base_url.rstrip('/')
        self.collection = collection
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f'{self.base_url}/{path.lstrip("/")}'
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.Timeout:
            raise SyncFailure(f'Timeout al conectar con {url}', retryable=True)
        except requests.exceptions.RequestException as e:
            raise SyncFailure(f'Error de conexión: {str(e)}', retryable=True)

        if response.status_code == 404 and method == 'GET':
            return None
        if response.status_code >= 500:
            raise SyncFailure(
                f'Backend remoto respondió {response.status_code}', retryable=True
            )
        if response.status_code >= 400:
            raise SyncFailure(
                f'Backend remoto rechazó la solicitud ({response.status_code})',
                retryable=False,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise SyncFailure('Respuesta remota no es JSON válido', retryable=True)

    def add(self, record: Dict[str, Any]) -> str:
        payload = self._request('POST', self.collection, json=record)
        remote_id = (payload or {}).get('id')
        if not remote_id:
            raise SyncFailure('El backend no retornó el ID remoto', retryable=True)
        return str(remote_id)

    def list(self, company_id: str, owner: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {'companyId': company_id}
        if owner:
            params['owner'] = owner
        payload = self._request('GET', self.collection, params=params)
        if isinstance(payload, dict):
            payload = payload.get(self.collection, [])
        return list(payload or [])

    def get(self, remote_id: str) -> Optional[Dict[str, Any]]:
        return self._request('GET', f'{self.collection}/{remote_id}')

    def update(self, remote_id: str, changes: Dict[str, Any]) -> None:
        self._request('PATCH', f'{self.collection}/{remote_id}', json=changes)

    def delete(self, remote_id: str) -> None:
        self._request('DELETE', f'{self.collection}/{remote_id}')


class JsonRemoteQuoteStore(DictRepository):
    """
    Espejo remoto en archivo JSON.

    Formato de remote_cotizaciones.json:
    {
        "9f1c...": {"remoteId": "9f1c...", "cotizacion_id": "COT-...", ...}
    }
    """

    def __init__(self, base_path: str, file_name: str = 'remote_cotizaciones.json'):
        super().__init__(os.path.join(base_path, file_name))

    def add(self, record: Dict[str, Any]) -> str:
        remote_id = uuid.uuid4().hex[:20]
        stored = copy.deepcopy(record)
        stored['remoteId'] = remote_id
        stored.pop('id', None)
        with self._transaction() as data:
            data[remote_id] = stored
        return remote_id

    def list(self, company_id: str, owner: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            record for record in self.get_all().values()
            if (not company_id or record.get('companyId', company_id) == company_id)
            and _matches_owner(record, owner)
        ]

    def get(self, remote_id: str) -> Optional[Dict[str, Any]]:
        return self.get_by_id(remote_id)

    def update(self, remote_id: str, changes: Dict[str, Any]) -> None:
        with self._file_lock:
            data = self.get_all()
            if remote_id not in data:
                raise SyncFailure(f'Registro remoto {remote_id} no existe', retryable=False)
            stored = copy.deepcopy(changes)
            stored.pop('id', None)
            data[remote_id].update(stored)
            data[remote_id]['remoteId'] = remote_id
            self._write_raw(data)

    def delete(self, remote_id: str) -> None:
        super().delete(remote_id)
