# ==============================================================================
# SERVICIO DE MIGRACIÓN - Importación única de cotizaciones legacy
# ==============================================================================
# Versiones anteriores guardaban las cotizaciones como una lista JSON
# (costos-quotes.json). La importación se ejecuta una sola vez: al terminar
# se marca 'localStorage_migrated' en configuracion.json.
# ==============================================================================

import json
import os
from typing import Any, Dict, List, Optional

from app_cotizaciones.errors import ValidationFailure
from app_cotizaciones.models.entities import Quote, SyncStatus, next_timestamp
from app_cotizaciones.repositories.interfaces import IQuoteRepository, ISettingsRepository
from app_cotizaciones.services.audit_service import AuditService

MIGRATED_FLAG = 'localStorage_migrated'
LEGACY_FILE = 'costos-quotes.json'


class MigrationService:
    """Importa cotizaciones legacy al almacén local."""

    def __init__(
        self,
        quote_repo: IQuoteRepository,
        settings_repo: ISettingsRepository,
        audit_service: Optional[AuditService] = None,
        sync_service=None,
        company_id: str = ''
    ):
        self.quote_repo = quote_repo
        self.settings_repo = settings_repo
        self.audit_service = audit_service
        self.sync_service = sync_service
        self.company_id = company_id

    def is_migrated(self) -> bool:
        return bool(self.settings_repo.get(MIGRATED_FLAG, False))

    def migrate_legacy_file(self, path: str) -> Dict[str, Any]:
        """
        Importa el archivo legacy si no se hizo antes.

        Cada registro pasa por la frontera de normalización; los que tienen
        estado no reconocido se omiten y se reportan. Los duplicados (mismo
        cotizacion_id) no se importan dos veces.

        Args:
            path: Ruta al JSON legacy (lista de cotizaciones)

        Returns:
            {'skipped': bool, 'migrated': n, 'duplicates': n, 'errors': [...]}

        Raises:
            ValidationFailure: Si el archivo no contiene una lista
        """
        result: Dict[str, Any] = {'skipped': False, 'migrated': 0, 'duplicates': 0, 'errors': []}
        if self.is_migrated():
            result['skipped'] = True
            return result

        if not os.path.exists(path):
            self.settings_repo.set(MIGRATED_FLAG, True)
            return result

        with open(path, 'r', encoding='utf-8') as f:
            try:
                legacy = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ValidationFailure(f'Archivo legacy inválido: {e}')
        if not isinstance(legacy, list):
            raise ValidationFailure('El archivo legacy debe contener una lista de cotizaciones')

        errors: List[Dict[str, Any]] = result['errors']
        for index, data in enumerate(legacy):
            if not isinstance(data, dict):
                errors.append({'index': index, 'error': 'Registro no es un objeto'})
                continue
            data = dict(data)
            data['cotizacion_id'] = data.get('cotizacion_id') or str(data.get('id') or '')
            if not data['cotizacion_id']:
                errors.append({'index': index, 'error': 'Registro sin identificador'})
                continue
            if self.quote_repo.find_by_cotizacion_id(data['cotizacion_id']):
                result['duplicates'] += 1
                continue
            data['id'] = None
            try:
                quote = Quote.from_dict(data)
            except ValidationFailure as e:
                errors.append({'index': index, 'cotizacion_id': data['cotizacion_id'], 'error': e.message})
                continue

            quote.companyId = quote.companyId or self.company_id
            quote.createdAt = quote.createdAt or next_timestamp()
            quote.updatedAt = quote.updatedAt or quote.createdAt
            quote.pendingSync = True
            quote.syncStatus = SyncStatus.PENDING.value
            quote.remoteId = None
            if not quote.totalGeneral:
                quote.recalculate_totals()

            new_id = self.quote_repo.add(quote.to_dict())
            result['migrated'] += 1
            if self.sync_service is not None:
                self.sync_service.schedule_push(new_id)

        self.settings_repo.set(MIGRATED_FLAG, True)
        if self.audit_service is not None:
            self.audit_service.log_system(
                f"Migración legacy: {result['migrated']} cotizaciones importadas",
                {'duplicates': result['duplicates'], 'errors': len(errors)},
            )
        return result
