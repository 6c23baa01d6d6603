# ==============================================================================
# CAPA DE MODELOS - Estructuras de datos del sistema
# ==============================================================================
# Entidades del dominio definidas con dataclasses, independientes del
# mecanismo de persistencia (JSON local, backend remoto).
# ==============================================================================

from .entities import (
    # Estados y normalización
    QuoteStatus,
    SyncStatus,
    STATUS_ALIASES,
    STATUS_FILTERS,
    UNKNOWN_STATUS,
    normalize_status,
    classify_status,

    # Cotizaciones
    Quote,
    QuoteRow,
    EDITABLE_FIELDS,
    parse_rows,
    group_rows,

    # Proveedores
    Provider,
    PROVIDER_CATEGORIES,

    # Usuarios
    UserRole,
    UserProfile,
    Actor,

    # Sincronización
    SyncDiscrepancy,

    # Auditoría
    AuditLog,

    # Utilidades
    utc_now_iso,
    next_timestamp,
)

__all__ = [
    'QuoteStatus',
    'SyncStatus',
    'STATUS_ALIASES',
    'STATUS_FILTERS',
    'UNKNOWN_STATUS',
    'normalize_status',
    'classify_status',
    'Quote',
    'QuoteRow',
    'EDITABLE_FIELDS',
    'parse_rows',
    'group_rows',
    'Provider',
    'PROVIDER_CATEGORIES',
    'UserRole',
    'UserProfile',
    'Actor',
    'SyncDiscrepancy',
    'AuditLog',
    'utc_now_iso',
    'next_timestamp',
]
