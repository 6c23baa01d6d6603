# ==============================================================================
# SERVICIO DE DIAGNÓSTICO
# ==============================================================================
# Reportes de consistencia del almacén local: cuántas cotizaciones hay por
# estado (incluyendo estados vacíos o desconocidos como 'sin_estado') y qué
# está pendiente de aprobación o de sincronización.
# ==============================================================================

from collections import Counter
from typing import Any, Dict, List, Optional

from app_cotizaciones.errors import SyncFailure
from app_cotizaciones.models.entities import Actor, QuoteStatus, classify_status
from app_cotizaciones.repositories.interfaces import IQuoteRepository


class DiagnosticsService:
    """Diagnóstico de estados y sincronización."""

    def __init__(self, quote_repo: IQuoteRepository, sync_service=None):
        self.quote_repo = quote_repo
        self.sync_service = sync_service

    def status_breakdown(self) -> Dict[str, Any]:
        """
        Conteo por estado clasificado, sin lanzar ante estados inválidos.

        Returns:
            {'total': n, 'porEstado': {estado|sin_estado: n},
             'rawStatuses': {literal_crudo: n}}
        """
        records = self.quote_repo.get_all()
        by_status = Counter(classify_status(r.get('status')) for r in records)
        raw = Counter(str(r.get('status') or '') for r in records)
        return {
            'total': len(records),
            'porEstado': dict(sorted(by_status.items())),
            'rawStatuses': dict(sorted(raw.items())),
        }

    def pending_summary(self) -> List[Dict[str, Any]]:
        """Cotizaciones pendientes de aprobación (más antiguas primero)."""
        pending = [
            r for r in self.quote_repo.get_all()
            if classify_status(r.get('status')) == QuoteStatus.PENDING_APPROVAL.value
        ]
        pending.sort(key=lambda r: r.get('submittedAt') or r.get('updatedAt') or '')
        return [
            {
                'id': r.get('id'),
                'cotizacion_id': r.get('cotizacion_id'),
                'clienteName': r.get('clienteName'),
                'vendorEmail': r.get('vendorEmail'),
                'totalGeneral': r.get('totalGeneral', 0),
                'submittedAt': r.get('submittedAt'),
            }
            for r in pending
        ]

    def unsynced(self) -> List[Dict[str, Any]]:
        """Cotizaciones con cambios sin confirmar en el remoto."""
        return [
            {
                'cotizacion_id': r.get('cotizacion_id'),
                'syncError': r.get('syncError'),
                'syncAttempts': r.get('syncAttempts', 0),
            }
            for r in self.quote_repo.filter(lambda r: r.get('pendingSync', True))
        ]

    def full_report(self, actor: Optional[Actor] = None) -> Dict[str, Any]:
        """
        Reporte completo. Si hay actor y servicio de sincronización incluye la
        conciliación; una caída del remoto se informa en 'remoteError'.
        """
        report: Dict[str, Any] = {
            'estados': self.status_breakdown(),
            'pendientes': self.pending_summary(),
            'sinSincronizar': self.unsynced(),
        }
        if self.sync_service is not None:
            report['sync'] = self.sync_service.get_sync_stats()
            if actor is not None:
                try:
                    report['conciliacion'] = self.sync_service.reconcile(actor).to_dict()
                except SyncFailure as e:
                    report['remoteError'] = e.message
        return report
