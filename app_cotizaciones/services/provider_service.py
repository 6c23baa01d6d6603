# ==============================================================================
# SERVICIO DE PROVEEDORES
# ==============================================================================
# Catálogo de proveedores de la empresa.
#
# - Lectura (view_providers o manage_providers): listados, búsqueda, reportes
# - Escritura (manage_providers): alta, edición, baja, importación
#
# El catálogo local es la fuente de verdad; sync_with_remote() sube los
# proveedores que no tienen remoteId y fusiona la lista remota por remoteId.
# ==============================================================================

import time
import uuid
from typing import Any, Dict, List, Optional

from app_cotizaciones.errors import Forbidden, NotFound, SyncFailure, ValidationFailure
from app_cotizaciones.models.entities import (
    DEFAULT_PROVIDER_IMAGE,
    PROVIDER_CATEGORIES,
    Actor,
    Provider,
    utc_now_iso,
)
from app_cotizaciones.performance_logger import log_sync_event, profile_function
from app_cotizaciones.repositories.interfaces import IRemoteQuoteStore
from app_cotizaciones.repositories.provider_repository import ProviderRepository
from app_cotizaciones.services.audit_service import AuditService

EXPORT_VERSION = '1.0'

# Campos que un administrador puede editar
EDITABLE_PROVIDER_FIELDS = ('name', 'imageUrl', 'category', 'isActive')


def generate_provider_id() -> str:
    """ID local: provider-<epoch ms>-<sufijo aleatorio>."""
    return f'provider-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}'


class ProviderService:
    """
    Gestión del catálogo de proveedores.
    """

    def __init__(
        self,
        provider_repo: ProviderRepository,
        remote: Optional[IRemoteQuoteStore] = None,
        audit_service: Optional[AuditService] = None,
        company_id: str = ''
    ):
        self.provider_repo = provider_repo
        self.remote = remote
        self.audit_service = audit_service
        self.company_id = company_id

    # =========================================================================
    # PERMISOS Y VALIDACIÓN
    # =========================================================================

    @staticmethod
    def _require_view(actor: Actor) -> None:
        if not (actor.has('view_providers') or actor.has('manage_providers')):
            raise Forbidden('No tienes permiso para ver proveedores', 'view_providers')

    @staticmethod
    def _require_manage(actor: Actor) -> None:
        if not actor.has('manage_providers'):
            raise Forbidden('No tienes permiso para gestionar proveedores', 'manage_providers')

    @staticmethod
    def _clean_name(value: Any) -> str:
        name = value.strip() if isinstance(value, str) else ''
        if not name:
            raise ValidationFailure('El nombre del proveedor es requerido')
        return name

    @staticmethod
    def _clean_category(value: Any) -> str:
        category = value or 'General'
        if category not in PROVIDER_CATEGORIES:
            raise ValidationFailure(
                f'Categoría inválida: {category!r}. Opciones: {", ".join(PROVIDER_CATEGORIES)}'
            )
        return category

    def _log(self, actor: Actor, action: str, provider: Provider) -> None:
        if self.audit_service is not None:
            self.audit_service.log_provider_change(actor.email, action, provider.id, provider.name)

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def _providers(self) -> List[Provider]:
        return [Provider.from_dict(r) for r in self.provider_repo.list()]

    def get_all(self, actor: Actor) -> List[Provider]:
        """Proveedores activos."""
        self._require_view(actor)
        return [p for p in self._providers() if p.isActive]

    def get_by_category(self, category: str, actor: Actor) -> List[Provider]:
        self._require_view(actor)
        return [p for p in self._providers() if p.isActive and p.category == category]

    def search_by_name(self, term: Optional[str], actor: Actor) -> List[Provider]:
        """
        Busca proveedores activos cuyo nombre contiene `term`.

        Un término vacío no devuelve resultados.
        """
        self._require_view(actor)
        term = (term or '').strip().lower()
        if not term:
            return []
        return [p for p in self._providers() if p.isActive and term in p.name.lower()]

    def get_by_id(self, provider_id: str, actor: Actor) -> Provider:
        self._require_view(actor)
        return self._load(provider_id)

    def _load(self, provider_id: str) -> Provider:
        record = self.provider_repo.get_by_id(provider_id)
        if record is None:
            raise NotFound(f'Proveedor {provider_id} no encontrado')
        return Provider.from_dict(record)

    # =========================================================================
    # ESCRITURA
    # =========================================================================

    def add(self, data: Dict[str, Any], actor: Actor) -> Provider:
        """
        Agrega un proveedor al catálogo.

        Args:
            data: {'name', 'imageUrl'?, 'category'?}
            actor: Usuario con manage_providers

        Raises:
            Forbidden: Sin permiso
            ValidationFailure: Nombre vacío o categoría desconocida
        """
        self._require_manage(actor)
        if not isinstance(data, dict):
            raise ValidationFailure('Los datos del proveedor deben ser un objeto')

        now = utc_now_iso()
        provider = Provider(
            id=generate_provider_id(),
            name=self._clean_name(data.get('name')),
            imageUrl=(data.get('imageUrl') or '').strip() or DEFAULT_PROVIDER_IMAGE,
            category=self._clean_category(data.get('category')),
            isActive=True,
            companyId=self.company_id,
            createdBy=actor.email,
            createdAt=now,
            updatedAt=now,
        )
        self.provider_repo.save(provider.to_dict())
        self._log(actor, 'agregado', provider)
        return provider

    def update(self, provider_id: str, changes: Dict[str, Any], actor: Actor) -> Provider:
        """
        Edita un proveedor. Solo se aceptan EDITABLE_PROVIDER_FIELDS.

        Si el proveedor ya está en el remoto, el cambio se replica; una falla
        remota queda en sync.log y se corrige en el próximo sync_with_remote.
        """
        self._require_manage(actor)
        if not isinstance(changes, dict):
            raise ValidationFailure('Los cambios deben ser un objeto')
        unknown = set(changes) - set(EDITABLE_PROVIDER_FIELDS)
        if unknown:
            raise ValidationFailure(f'Campos no editables: {", ".join(sorted(unknown))}')

        provider = self._load(provider_id)
        if 'name' in changes:
            provider.name = self._clean_name(changes['name'])
        if 'imageUrl' in changes:
            provider.imageUrl = (changes['imageUrl'] or '').strip() or DEFAULT_PROVIDER_IMAGE
        if 'category' in changes:
            provider.category = self._clean_category(changes['category'])
        if 'isActive' in changes:
            provider.isActive = bool(changes['isActive'])
        provider.updatedAt = utc_now_iso()
        self.provider_repo.save(provider.to_dict())

        if provider.remoteId and self.remote is not None:
            fields = {k: getattr(provider, k) for k in EDITABLE_PROVIDER_FIELDS}
            fields['updatedAt'] = provider.updatedAt
            try:
                self.remote.update(provider.remoteId, fields)
            except SyncFailure as e:
                log_sync_event('PROVIDER_PUSH_FAIL', provider.id, e.message, 'WARNING')

        self._log(actor, 'actualizado', provider)
        return provider

    def delete(self, provider_id: str, actor: Actor) -> Provider:
        """Elimina un proveedor del catálogo local (y del remoto si existe)."""
        self._require_manage(actor)
        provider = self._load(provider_id)
        if provider.remoteId and self.remote is not None:
            try:
                self.remote.delete(provider.remoteId)
            except SyncFailure as e:
                log_sync_event('PROVIDER_DELETE_FAIL', provider.id, e.message, 'WARNING')
        self.provider_repo.delete(provider.id)
        self._log(actor, 'eliminado', provider)
        return provider

    # =========================================================================
    # REPORTES E INTERCAMBIO
    # =========================================================================

    def get_stats(self, actor: Actor) -> Dict[str, Any]:
        """
        Returns:
            {'total', 'active', 'inactive', 'categories', 'categoryBreakdown'}
        """
        self._require_view(actor)
        providers = self._providers()
        active = len([p for p in providers if p.isActive])
        categories: List[str] = []
        for provider in providers:
            if provider.category not in categories:
                categories.append(provider.category)
        return {
            'total': len(providers),
            'active': active,
            'inactive': len(providers) - active,
            'categories': len(categories),
            'categoryBreakdown': [
                {'name': cat, 'count': len([p for p in providers if p.category == cat])}
                for cat in categories
            ],
        }

    def export_providers(self, actor: Actor) -> Dict[str, Any]:
        self._require_view(actor)
        return {
            'providers': [p.to_dict() for p in self._providers()],
            'exportDate': utc_now_iso(),
            'version': EXPORT_VERSION,
        }

    def import_providers(self, data: Any, actor: Actor) -> List[Provider]:
        """
        Importa un export previo. Cada proveedor con nombre se agrega como
        nuevo; los que no tienen nombre se omiten.

        Raises:
            ValidationFailure: Si data no trae una lista 'providers'
        """
        self._require_manage(actor)
        if not isinstance(data, dict) or not isinstance(data.get('providers'), list):
            raise ValidationFailure('Formato de datos inválido')

        imported = []
        for item in data['providers']:
            if not isinstance(item, dict):
                continue
            name = item.get('name')
            if not isinstance(name, str) or not name.strip():
                continue
            category = item.get('category')
            imported.append(self.add({
                'name': name,
                'imageUrl': item.get('imageUrl') or DEFAULT_PROVIDER_IMAGE,
                'category': category if category in PROVIDER_CATEGORIES else 'General',
            }, actor))
        return imported

    # =========================================================================
    # SINCRONIZACIÓN
    # =========================================================================

    @profile_function(name="Sincronizar proveedores")
    def sync_with_remote(self, actor: Actor) -> Dict[str, int]:
        """
        Sube los proveedores locales sin remoteId y fusiona la lista remota.

        Un proveedor remoto cuyo remoteId ya existe localmente actualiza ese
        registro, salvo que la copia local sea más reciente (updatedAt): en
        ese caso se vuelve a subir la local. Los demás se agregan al catálogo.

        Returns:
            {'uploaded', 'downloaded', 'updated'}

        Raises:
            Forbidden: Sin permiso de lectura
            SyncFailure: Si el remoto no responde
        """
        self._require_view(actor)
        if self.remote is None:
            raise SyncFailure('No hay almacén remoto configurado', retryable=False)

        uploaded = 0
        for provider in self._providers():
            if provider.remoteId:
                continue
            provider.companyId = provider.companyId or self.company_id
            payload = provider.to_dict()
            payload.pop('remoteId')
            provider.remoteId = self.remote.add(payload)
            self.provider_repo.save(provider.to_dict())
            uploaded += 1

        downloaded = updated = 0
        for remote_record in self.remote.list(self.company_id):
            remote_id = remote_record.get('remoteId')
            if not remote_id:
                continue
            local = self.provider_repo.find_by_remote_id(remote_id)
            if local is not None:
                if (local.get('updatedAt') or '') > (remote_record.get('updatedAt') or ''):
                    fields = {k: local.get(k) for k in EDITABLE_PROVIDER_FIELDS}
                    fields['updatedAt'] = local.get('updatedAt')
                    self.remote.update(remote_id, fields)
                    uploaded += 1
                    continue
                merged = dict(local, **remote_record)
                merged['id'] = local['id']
                if merged != local:
                    self.provider_repo.save(Provider.from_dict(merged).to_dict())
                    updated += 1
            else:
                record = dict(remote_record)
                record['id'] = generate_provider_id()
                self.provider_repo.save(Provider.from_dict(record).to_dict())
                downloaded += 1

        log_sync_event('PROVIDERS', '', f'subidos={uploaded} descargados={downloaded} '
                                        f'actualizados={updated}')
        return {'uploaded': uploaded, 'downloaded': downloaded, 'updated': updated}
