# ==============================================================================
# ENTIDADES DEL DOMINIO - Definiciones de dataclasses
# ==============================================================================
# Cada entidad representa un concepto del negocio.
# Diseñadas para ser independientes del mecanismo de persistencia
# (archivo JSON local, espejo remoto HTTP).
#
# Las claves de persistencia conservan el formato histórico de la aplicación
# (clienteName, totalGeneral, trmGlobal, ...) para que los datos ya guardados
# y el backend remoto sigan siendo compatibles.
# ==============================================================================

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from app_cotizaciones.errors import ValidationFailure


def utc_now_iso() -> str:
    """Timestamp ISO-8601 en UTC."""
    return datetime.now(timezone.utc).isoformat()


def next_timestamp(previous: Optional[str] = None) -> str:
    """
    Timestamp estrictamente posterior a `previous`.

    Dos escrituras seguidas pueden caer en el mismo microsegundo; updatedAt
    debe avanzar siempre.
    """
    now = datetime.now(timezone.utc)
    if previous:
        try:
            prev = datetime.fromisoformat(previous)
            if prev.tzinfo is None:
                prev = prev.replace(tzinfo=timezone.utc)
            if now <= prev:
                now = prev + timedelta(microseconds=1)
        except ValueError:
            pass
    return now.isoformat()


# ==============================================================================
# ENUMERACIONES - Estados y roles válidos
# ==============================================================================

class UserRole(str, Enum):
    """Roles de usuario disponibles en el sistema."""
    ADMIN = "admin"
    VENDEDOR = "vendedor"    # Rol por defecto (menor privilegio)
    COMPRADOR = "comprador"
    REVISOR = "revisor"


class QuoteStatus(str, Enum):
    """Estados del flujo de aprobación de una cotización."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    SENT_FOR_APPROVAL = "sent_for_approval"  # Legacy: se normaliza a PENDING_APPROVAL
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION = "revision"


class SyncStatus(str, Enum):
    """Estado de sincronización con el almacenamiento remoto."""
    SYNCED = "synced"
    PENDING = "pending"


# Literales históricos → estado canónico.
# La aplicación acumuló varios nombres para "pendiente" y para los estados
# de revisión/rechazo; se aceptan todos en la entrada y se normalizan.
STATUS_ALIASES = {
    'draft': QuoteStatus.DRAFT,
    'pending': QuoteStatus.PENDING_APPROVAL,
    'pending_approval': QuoteStatus.PENDING_APPROVAL,
    'sent_for_approval': QuoteStatus.PENDING_APPROVAL,
    'approved': QuoteStatus.APPROVED,
    'rejected': QuoteStatus.REJECTED,
    'denied': QuoteStatus.REJECTED,
    'revision': QuoteStatus.REVISION,
    'revision_requested': QuoteStatus.REVISION,
}

# Clasificación de diagnóstico para estados vacíos o no reconocidos
UNKNOWN_STATUS = 'sin_estado'

# Filtros de listado → conjunto de estados canónicos
STATUS_FILTERS = {
    'all': None,
    'draft': frozenset([QuoteStatus.DRAFT]),
    'pending': frozenset([QuoteStatus.PENDING_APPROVAL]),
    'approved': frozenset([QuoteStatus.APPROVED]),
    'rejected': frozenset([QuoteStatus.REJECTED]),
    'revision': frozenset([QuoteStatus.REVISION]),
}


def normalize_status(raw: Any) -> QuoteStatus:
    """
    Convierte cualquier literal de estado aceptado al estado canónico.

    Se aplica en cada frontera de entrada (creación, edición, descarga del
    remoto, importación legacy) para que el núcleo nunca compare strings.

    Args:
        raw: Literal de estado (str o QuoteStatus)

    Returns:
        QuoteStatus canónico (nunca SENT_FOR_APPROVAL)

    Raises:
        ValidationFailure: Si el estado está vacío o no es reconocido
    """
    if isinstance(raw, QuoteStatus):
        key = raw.value
    elif raw is None:
        key = ''
    else:
        key = str(raw).strip().lower()
    status = STATUS_ALIASES.get(key)
    if status is None:
        raise ValidationFailure(f'Estado de cotización inválido: {raw!r}')
    return status


def classify_status(raw: Any) -> str:
    """
    Clasificación de diagnóstico: estado canónico o 'sin_estado'.
    No lanza excepciones.
    """
    try:
        return normalize_status(raw).value
    except ValidationFailure:
        return UNKNOWN_STATUS


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == '':
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f'Valor numérico inválido: {value!r}')


# ==============================================================================
# ENTIDADES DE COTIZACIÓN
# ==============================================================================

@dataclass
class QuoteRow:
    """
    Línea de una cotización.

    Attributes:
        itemName: Nombre del ítem
        cantidad: Cantidad cotizada
        costoUSD: Costo unitario en USD
        trm: Tasa de cambio USD→COP de la línea (0 = usar trmGlobal)
        pvpUnitario: Precio de venta unitario en COP
        costoCOP: Costo unitario en COP (derivado)
        pvpTotal: cantidad * pvpUnitario (derivado)
        margen: Margen porcentual sobre el costo (derivado si hay costo)
    """
    itemName: str = ''
    cantidad: float = 0.0
    costoUSD: float = 0.0
    trm: float = 0.0
    pvpUnitario: float = 0.0
    costoCOP: float = 0.0
    pvpTotal: float = 0.0
    margen: float = 0.0
    itemDescription: str = ''
    marca: str = ''
    referencia: str = ''
    configuracion: str = ''
    mayorista: str = ''
    row_id: Optional[int] = None

    def recalculate(self, trm_global: float = 0.0) -> None:
        """Recalcula los valores derivados de la línea."""
        if self.cantidad < 0 or self.costoUSD < 0 or self.pvpUnitario < 0:
            raise ValidationFailure('Cantidades, costos y precios no pueden ser negativos')
        trm = self.trm or trm_global or 0.0
        self.trm = trm
        self.costoCOP = round(self.costoUSD * trm, 2)
        self.pvpTotal = round(self.cantidad * self.pvpUnitario, 2)
        if self.costoCOP > 0:
            self.margen = round((self.pvpUnitario - self.costoCOP) / self.costoCOP * 100, 2)
        else:
            self.margen = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a diccionario para persistencia."""
        d = {
            'itemName': self.itemName,
            'itemDescription': self.itemDescription,
            'cantidad': self.cantidad,
            'costoUSD': self.costoUSD,
            'trm': self.trm,
            'costoCOP': self.costoCOP,
            'pvpUnitario': self.pvpUnitario,
            'pvpTotal': self.pvpTotal,
            'margen': self.margen,
            'marca': self.marca,
            'referencia': self.referencia,
            'configuracion': self.configuracion,
            'mayorista': self.mayorista,
        }
        if self.row_id is not None:
            d['id'] = self.row_id
        return d

    @property
    def item_key(self) -> str:
        """Clave del ítem al que pertenece la línea (las opciones comparten clave)."""
        for label in (self.itemName, self.configuracion):
            if label and label.strip():
                return 'item-' + '-'.join(label.lower().split())
        if self.marca and self.referencia:
            return 'item-' + '-'.join(f'{self.marca} {self.referencia}'.lower().split())
        return ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuoteRow':
        """Crea instancia desde diccionario."""
        if not isinstance(data, dict):
            raise ValidationFailure(f'Línea de cotización inválida: {data!r}')
        return cls(
            itemName=data.get('itemName', '') or '',
            cantidad=_to_float(data.get('cantidad')),
            costoUSD=_to_float(data.get('costoUSD')),
            trm=_to_float(data.get('trm')),
            pvpUnitario=_to_float(data.get('pvpUnitario')),
            costoCOP=_to_float(data.get('costoCOP')),
            pvpTotal=_to_float(data.get('pvpTotal')),
            margen=_to_float(data.get('margen')),
            itemDescription=data.get('itemDescription', '') or '',
            marca=data.get('marca', '') or '',
            referencia=data.get('referencia', '') or '',
            configuracion=data.get('configuracion', '') or '',
            mayorista=data.get('mayorista', '') or '',
            row_id=data.get('id'),
        )


def parse_rows(value: Any) -> List[QuoteRow]:
    """
    Convierte la lista cruda de líneas.

    Raises:
        ValidationFailure: Si no es una lista de objetos
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationFailure('Las líneas de la cotización deben ser una lista')
    return [QuoteRow.from_dict(row) for row in value]


def group_rows(rows: List[QuoteRow]) -> Dict[str, List[int]]:
    """
    Agrupa las líneas por ítem: {clave_item: [posiciones de sus opciones]}.

    Varias líneas del mismo ítem son opciones alternativas entre las que el
    revisor elige una al aprobar. Una línea sin nombre forma su propio grupo.
    """
    groups: Dict[str, List[int]] = {}
    for index, row in enumerate(rows):
        key = row.item_key or f'item-{index + 1}'
        groups.setdefault(key, []).append(index)
    return groups


# Campos editables desde update_quote (el estado NO está aquí)
EDITABLE_FIELDS = frozenset([
    'clienteName', 'vendorName', 'vendorEmail', 'rows', 'trmGlobal', 'notes',
])


@dataclass
class Quote:
    """
    Cotización completa.

    Attributes:
        id: ID asignado por el almacén local
        cotizacion_id: ID de aplicación compartido entre local y remoto
        status: Estado canónico del flujo
        clienteName: Cliente
        vendorName: Vendedor
        vendorEmail: Email del vendedor
        rows: Líneas de la cotización
        totalGeneral: Suma de pvpTotal (derivado)
        trmGlobal: Tasa de cambio usada para el total
        createdAt / updatedAt: Timestamps ISO-8601
    """
    id: Optional[int] = None
    cotizacion_id: str = ''
    status: QuoteStatus = QuoteStatus.DRAFT
    clienteName: str = ''
    vendorName: str = ''
    vendorEmail: str = ''
    rows: List[QuoteRow] = field(default_factory=list)
    totalGeneral: float = 0.0
    trmGlobal: float = 0.0
    notes: str = ''
    createdAt: str = ''
    updatedAt: str = ''
    createdBy: str = ''
    companyId: str = ''

    # Metadatos del flujo
    submittedAt: Optional[str] = None
    approvedBy: Optional[str] = None
    approvalDate: Optional[str] = None
    rejectedBy: Optional[str] = None
    rejectionReason: Optional[str] = None
    rejectionDate: Optional[str] = None
    revisedBy: Optional[str] = None
    revisionComments: Optional[str] = None
    revisionDate: Optional[str] = None
    statusHistory: List[Dict[str, Any]] = field(default_factory=list)

    # Decisión del revisor por ítem (las líneas no se modifican)
    selectedOptions: Dict[str, int] = field(default_factory=dict)
    itemComments: Dict[str, str] = field(default_factory=dict)
    approvedTotal: Optional[float] = None

    # Metadatos de sincronización
    pendingSync: bool = True
    syncStatus: str = SyncStatus.PENDING.value
    remoteId: Optional[str] = None
    syncError: Optional[str] = None
    lastSyncAt: Optional[str] = None
    syncAttempts: int = 0

    # Seguimiento de compras
    purchaseData: Dict[str, Any] = field(default_factory=dict)
    purchaseStatus: Optional[str] = None
    purchaseHistory: List[Dict[str, Any]] = field(default_factory=list)
    purchaseNotes: str = ''

    @property
    def is_editable(self) -> bool:
        """Las líneas solo se editan en borrador o en revisión."""
        return self.status in (QuoteStatus.DRAFT, QuoteStatus.REVISION)

    def owned_by(self, email: str) -> bool:
        """Verifica si el email es el creador o el vendedor de la cotización."""
        if not email:
            return False
        email = email.lower()
        return email in ((self.createdBy or '').lower(), (self.vendorEmail or '').lower())

    def recalculate_totals(self) -> None:
        """Recalcula líneas y total general."""
        for row in self.rows:
            row.recalculate(self.trmGlobal)
        self.totalGeneral = round(sum(row.pvpTotal for row in self.rows), 2)

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a diccionario para persistencia JSON."""
        status = self.status.value if isinstance(self.status, Enum) else self.status
        return {
            'id': self.id,
            'cotizacion_id': self.cotizacion_id,
            'status': status,
            'clienteName': self.clienteName,
            'vendorName': self.vendorName,
            'vendorEmail': self.vendorEmail,
            'rows': [row.to_dict() for row in self.rows],
            'totalGeneral': self.totalGeneral,
            'trmGlobal': self.trmGlobal,
            'notes': self.notes,
            'createdAt': self.createdAt,
            'updatedAt': self.updatedAt,
            'createdBy': self.createdBy,
            'companyId': self.companyId,
            'submittedAt': self.submittedAt,
            'approvedBy': self.approvedBy,
            'approvalDate': self.approvalDate,
            'rejectedBy': self.rejectedBy,
            'rejectionReason': self.rejectionReason,
            'rejectionDate': self.rejectionDate,
            'revisedBy': self.revisedBy,
            'revisionComments': self.revisionComments,
            'revisionDate': self.revisionDate,
            'statusHistory': list(self.statusHistory),
            'selectedOptions': dict(self.selectedOptions),
            'itemComments': dict(self.itemComments),
            'approvedTotal': self.approvedTotal,
            'pendingSync': self.pendingSync,
            'syncStatus': self.syncStatus,
            'remoteId': self.remoteId,
            'syncError': self.syncError,
            'lastSyncAt': self.lastSyncAt,
            'syncAttempts': self.syncAttempts,
            'purchaseData': dict(self.purchaseData),
            'purchaseStatus': self.purchaseStatus,
            'purchaseHistory': list(self.purchaseHistory),
            'purchaseNotes': self.purchaseNotes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Quote':
        """
        Crea instancia desde diccionario.

        Frontera de entrada: el estado se normaliza aquí.

        Raises:
            ValidationFailure: Si el estado o las líneas no son válidos
        """
        rows = parse_rows(data.get('rows'))
        approved_total = data.get('approvedTotal')
        return cls(
            id=data.get('id'),
            cotizacion_id=data.get('cotizacion_id', '') or '',
            status=normalize_status(data.get('status', QuoteStatus.DRAFT.value)),
            clienteName=data.get('clienteName', '') or '',
            vendorName=data.get('vendorName', '') or '',
            vendorEmail=data.get('vendorEmail', '') or '',
            rows=rows,
            totalGeneral=_to_float(data.get('totalGeneral')),
            trmGlobal=_to_float(data.get('trmGlobal')),
            notes=data.get('notes', '') or '',
            createdAt=data.get('createdAt', '') or '',
            updatedAt=data.get('updatedAt', '') or '',
            createdBy=data.get('createdBy', '') or '',
            companyId=data.get('companyId', '') or '',
            submittedAt=data.get('submittedAt'),
            approvedBy=data.get('approvedBy'),
            approvalDate=data.get('approvalDate'),
            rejectedBy=data.get('rejectedBy'),
            rejectionReason=data.get('rejectionReason'),
            rejectionDate=data.get('rejectionDate'),
            revisedBy=data.get('revisedBy'),
            revisionComments=data.get('revisionComments'),
            revisionDate=data.get('revisionDate'),
            statusHistory=list(data.get('statusHistory') or []),
            selectedOptions=dict(data.get('selectedOptions') or {}),
            itemComments=dict(data.get('itemComments') or {}),
            approvedTotal=None if approved_total is None else _to_float(approved_total),
            pendingSync=bool(data.get('pendingSync', True)),
            syncStatus=data.get('syncStatus', SyncStatus.PENDING.value),
            remoteId=data.get('remoteId'),
            syncError=data.get('syncError'),
            lastSyncAt=data.get('lastSyncAt'),
            syncAttempts=int(data.get('syncAttempts', 0) or 0),
            purchaseData=dict(data.get('purchaseData') or {}),
            purchaseStatus=data.get('purchaseStatus'),
            purchaseHistory=list(data.get('purchaseHistory') or []),
            purchaseNotes=data.get('purchaseNotes', '') or '',
        )


# ==============================================================================
# PROVEEDORES
# ==============================================================================

PROVIDER_CATEGORIES = (
    'General', 'Tecnología', 'Construcción', 'Servicios', 'Equipos', 'Materiales', 'Otros',
)

DEFAULT_PROVIDER_IMAGE = (
    'https://ui-avatars.com/api/?name=Proveedor&size=150&background=0ea5e9&color=fff&rounded=true'
)


@dataclass
class Provider:
    """
    Proveedor del catálogo (mayorista asociado a las líneas).

    Attributes:
        id: ID local (provider-<epoch ms>-<sufijo>)
        name: Nombre visible
        category: Una de PROVIDER_CATEGORIES
        isActive: Los inactivos no aparecen en listados ni búsquedas
        remoteId: ID en el almacén remoto (None si nunca se subió)
    """
    id: str
    name: str
    imageUrl: str = DEFAULT_PROVIDER_IMAGE
    category: str = 'General'
    isActive: bool = True
    companyId: str = ''
    createdBy: str = ''
    createdAt: str = ''
    updatedAt: str = ''
    remoteId: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'imageUrl': self.imageUrl,
            'category': self.category,
            'isActive': self.isActive,
            'companyId': self.companyId,
            'createdBy': self.createdBy,
            'createdAt': self.createdAt,
            'updatedAt': self.updatedAt,
            'remoteId': self.remoteId,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Provider':
        return cls(
            id=str(data.get('id') or ''),
            name=(data.get('name') or '').strip(),
            imageUrl=(data.get('imageUrl') or '').strip() or DEFAULT_PROVIDER_IMAGE,
            category=data.get('category') or 'General',
            isActive=data.get('isActive', True) is not False,
            companyId=data.get('companyId', '') or '',
            createdBy=data.get('createdBy', '') or '',
            createdAt=data.get('createdAt', '') or '',
            updatedAt=data.get('updatedAt', '') or '',
            remoteId=data.get('remoteId'),
        )


# ==============================================================================
# ENTIDADES DE USUARIO
# ==============================================================================

@dataclass
class UserProfile:
    """
    Perfil de usuario de la empresa.

    Attributes:
        email: Identidad (en minúsculas)
        role: Rol que define los permisos
        permissions: Permisos derivados del rol
        lastLogin: Último inicio de sesión
    """
    email: str
    displayName: str = ''
    role: UserRole = UserRole.VENDEDOR
    permissions: List[str] = field(default_factory=list)
    isActive: bool = True
    companyId: str = ''
    createdAt: str = ''
    updatedAt: str = ''
    lastLogin: Optional[str] = None
    createdBy: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convierte a diccionario (sin credenciales)."""
        return {
            'email': self.email,
            'displayName': self.displayName,
            'role': self.role.value if isinstance(self.role, Enum) else self.role,
            'permissions': list(self.permissions),
            'isActive': self.isActive,
            'companyId': self.companyId,
            'createdAt': self.createdAt,
            'updatedAt': self.updatedAt,
            'lastLogin': self.lastLogin,
            'createdBy': self.createdBy,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        """Crea instancia desde diccionario. Un rol desconocido cae a vendedor."""
        try:
            role = UserRole(data.get('role', UserRole.VENDEDOR.value))
        except ValueError:
            role = UserRole.VENDEDOR
        return cls(
            email=(data.get('email') or '').lower(),
            displayName=data.get('displayName', '') or '',
            role=role,
            permissions=list(data.get('permissions') or []),
            isActive=data.get('isActive', True) is not False,
            companyId=data.get('companyId', '') or '',
            createdAt=data.get('createdAt', '') or '',
            updatedAt=data.get('updatedAt', '') or '',
            lastLogin=data.get('lastLogin'),
            createdBy=data.get('createdBy'),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass(frozen=True)
class Actor:
    """
    Identidad resuelta que ejecuta una operación.

    Es el resultado de PermissionService.resolve(); el núcleo del flujo
    solo conoce esta estructura, no la sesión de autenticación.
    """
    email: str
    role: UserRole = UserRole.VENDEDOR
    permissions: FrozenSet[str] = frozenset()
    display_name: str = ''

    def has(self, permission: str) -> bool:
        return permission in self.permissions


# ==============================================================================
# REPORTE DE SINCRONIZACIÓN
# ==============================================================================

@dataclass
class SyncDiscrepancy:
    """
    Resultado de comparar el almacén local con el remoto.

    Attributes:
        local_count: Registros locales visibles para el actor
        remote_count: Registros remotos visibles para el actor
        missing_remote: cotizacion_id presentes solo en local
        missing_local: cotizacion_id presentes solo en remoto
        status_mismatches: [{cotizacion_id, local, remote}]
        pending_sync: cotizacion_id con cambios locales sin confirmar
    """
    local_count: int = 0
    remote_count: int = 0
    missing_remote: List[str] = field(default_factory=list)
    missing_local: List[str] = field(default_factory=list)
    status_mismatches: List[Dict[str, str]] = field(default_factory=list)
    pending_sync: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not (self.missing_remote or self.missing_local or self.status_mismatches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'localCount': self.local_count,
            'remoteCount': self.remote_count,
            'missingRemote': list(self.missing_remote),
            'missingLocal': list(self.missing_local),
            'statusMismatches': list(self.status_mismatches),
            'pendingSync': list(self.pending_sync),
            'isConsistent': self.is_consistent,
        }


# ==============================================================================
# ENTIDADES DE AUDITORÍA
# ==============================================================================

@dataclass
class AuditLog:
    """
    Registro de auditoría.

    Attributes:
        type: Tipo de evento (COTIZACION, FLUJO, SYNC, USUARIO, COMPRA, SISTEMA)
        user: Usuario que realizó la acción
        message: Mensaje descriptivo humanizado
        timestamp: Fecha y hora del evento
        related_id: ID relacionado (cotizacion_id, email, ...)
        details: Detalles adicionales
    """
    type: str
    user: str
    message: str
    timestamp: str = ''
    related_id: str = ''
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'user': self.user,
            'message': self.message,
            'timestamp': self.timestamp,
            'related_id': self.related_id,
            'details': self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLog':
        return cls(
            type=data.get('type', ''),
            user=data.get('user', ''),
            message=data.get('message', ''),
            timestamp=data.get('timestamp', ''),
            related_id=data.get('related_id', ''),
            details=data.get('details', {}),
        )
