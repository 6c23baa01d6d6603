# ==============================================================================
# SERVICIO DE COMPRAS
# ==============================================================================
# Seguimiento posterior a la aprobación: el comprador registra el precio final
# de compra de cada ítem y cierra la compra. No modifica el estado del flujo.
# ==============================================================================

from typing import Any, Dict, Optional

from app_cotizaciones.errors import Forbidden, ValidationFailure
from app_cotizaciones.models.entities import Actor, Quote, QuoteStatus, next_timestamp
from app_cotizaciones.services.audit_service import AuditService
from app_cotizaciones.services.quote_service import QuoteService

PURCHASE_IN_PROGRESS = 'in_progress'
PURCHASE_COMPLETED = 'completed'


def calculate_margin_difference(
    original_price: float,
    final_price: float,
    original_margin: Optional[float]
) -> Optional[Dict[str, Any]]:
    """
    Compara el margen cotizado con el resultante del precio final.

    El costo base se deduce del precio cotizado y su margen:
    costo = precio / (1 + margen/100).

    Args:
        original_price: Precio unitario cotizado
        final_price: Precio final de compra
        original_margin: Margen cotizado (%)

    Returns:
        Dict con costo base, nuevo margen y diferencias, o None si faltan datos
    """
    if not original_price or not final_price or original_margin is None:
        return None

    original_cost = original_price / (1 + original_margin / 100)
    if original_cost == 0:
        return None
    new_margin = (final_price - original_cost) / original_cost * 100
    margin_difference = new_margin - original_margin
    price_difference = final_price - original_price

    return {
        'originalPrice': original_price,
        'finalPrice': final_price,
        'originalCost': round(original_cost, 2),
        'originalMargin': original_margin,
        'newMargin': round(new_margin, 2),
        'marginDifference': round(margin_difference, 2),
        'priceDifference': round(price_difference, 2),
        'percentageDifference': round(price_difference / original_price * 100, 2),
        'isImprovement': margin_difference > 0,
    }


class PurchaseService:
    """
    Gestión de compras sobre cotizaciones aprobadas.
    """

    def __init__(self, quote_service: QuoteService, audit_service: Optional[AuditService] = None):
        self.quote_service = quote_service
        self.audit_service = audit_service

    @staticmethod
    def _require_buyer(actor: Actor) -> None:
        if not actor.has('set_final_purchase_price'):
            raise Forbidden('Solo los compradores pueden realizar estas operaciones',
                            'set_final_purchase_price')

    def update_final_purchase_price(
        self,
        quote_id: int,
        item_index: int,
        final_price: Any,
        actor: Actor,
        notes: str = ''
    ) -> Dict[str, Any]:
        """
        Registra el precio final de compra de un ítem.

        Args:
            quote_id: ID local de la cotización
            item_index: Posición del ítem (desde 0)
            final_price: Precio final de compra (> 0)
            actor: Comprador
            notes: Notas del comprador

        Returns:
            Registro de compra guardado

        Raises:
            Forbidden: Si el actor no es comprador
            ValidationFailure: Si la cotización no está aprobada o los datos
                son inválidos
        """
        self._require_buyer(actor)
        try:
            price = float(final_price)
        except (TypeError, ValueError):
            raise ValidationFailure(f'Precio inválido: {final_price!r}')
        if price <= 0:
            raise ValidationFailure('El precio final debe ser mayor a cero')

        result: Dict[str, Any] = {}

        def mutate(quote: Quote) -> None:
            if quote.status != QuoteStatus.APPROVED:
                raise ValidationFailure('Solo se compran cotizaciones aprobadas')
            if not 0 <= item_index < len(quote.rows):
                raise ValidationFailure(f'Ítem {item_index} no existe')
            row = quote.rows[item_index]
            now = next_timestamp()
            entry = {
                'itemIndex': item_index,
                'finalPurchasePrice': price,
                'updatedBy': actor.email,
                'updatedAt': now,
                'buyerNotes': notes,
                'marginDifference': calculate_margin_difference(
                    row.pvpUnitario, price, row.margen
                ),
            }
            quote.purchaseData[str(item_index)] = entry
            quote.purchaseStatus = PURCHASE_IN_PROGRESS
            quote.purchaseHistory.append(dict(entry, action='price_update'))
            result.update(entry)

        quote = self.quote_service.apply_changes(quote_id, mutate)
        if self.audit_service is not None:
            self.audit_service.log_purchase_price(actor.email, quote.cotizacion_id, item_index, price)
        return result

    def finalize_purchase(self, quote_id: int, actor: Actor, notes: str = '') -> Quote:
        """Cierra la compra de una cotización aprobada."""
        self._require_buyer(actor)

        def mutate(quote: Quote) -> None:
            if quote.status != QuoteStatus.APPROVED:
                raise ValidationFailure('Solo se compran cotizaciones aprobadas')
            quote.purchaseStatus = PURCHASE_COMPLETED
            quote.purchaseNotes = notes
            quote.purchaseHistory.append({
                'action': 'purchase_completed',
                'completedBy': actor.email,
                'notes': notes,
                'timestamp': next_timestamp(),
            })

        quote = self.quote_service.apply_changes(quote_id, mutate)
        if self.audit_service is not None:
            self.audit_service.log_purchase_completed(actor.email, quote.cotizacion_id)
        return quote

    def get_purchase_stats(self, actor: Actor) -> Dict[str, Any]:
        """
        Resumen de compras sobre las cotizaciones aprobadas.

        Returns:
            {'totalPurchases', 'inProgress', 'completed',
             'averageMarginDifference', 'totalSavings'}
        """
        if not actor.has('view_purchase_reports'):
            raise Forbidden('No tienes permiso para ver reportes de compras', 'view_purchase_reports')

        approved = self.quote_service.list_by_status('approved')
        differences = []
        savings = 0.0
        for quote in approved:
            for entry in quote.purchaseData.values():
                diff = entry.get('marginDifference') or {}
                if 'marginDifference' in diff:
                    differences.append(diff['marginDifference'])
                    savings -= diff.get('priceDifference', 0.0)

        return {
            'totalPurchases': len([q for q in approved if q.purchaseStatus]),
            'inProgress': len([q for q in approved if q.purchaseStatus == PURCHASE_IN_PROGRESS]),
            'completed': len([q for q in approved if q.purchaseStatus == PURCHASE_COMPLETED]),
            'averageMarginDifference': round(sum(differences) / len(differences), 2) if differences else 0,
            'totalSavings': round(savings, 2),
        }
