# ==============================================================================
# CONTENEDOR DE DEPENDENCIAS - Inyección de servicios
# ==============================================================================
# Este módulo proporciona una forma centralizada de obtener instancias
# de repositorios y servicios. Facilita:
#   - Inyección de dependencias
#   - Testing (se construye un contenedor sobre una carpeta temporal)
#   - Cambiar el almacén remoto (HTTP o espejo JSON) sin tocar servicios
#
# El almacén remoto se elige con la configuración:
#   COTIZ_REMOTE_URL definida → HttpRemoteQuoteStore
#   sin URL                   → JsonRemoteQuoteStore (remote_cotizaciones.json)
# ==============================================================================

import os
from typing import Optional

from app_cotizaciones.config import AppConfig

# ═══════════════════════════════════════════════════════════════════════════════
# REPOSITORIOS - Capa de persistencia
# ═══════════════════════════════════════════════════════════════════════════════
from app_cotizaciones.repositories import (
    AuditRepository,
    HttpRemoteQuoteStore,
    IRemoteQuoteStore,
    JsonRemoteQuoteStore,
    LocalQuoteRepository,
    ProviderRepository,
    SettingsRepository,
    UserRepository,
)

# ═══════════════════════════════════════════════════════════════════════════════
# SERVICIOS - Capa de lógica de negocio
# ═══════════════════════════════════════════════════════════════════════════════
from app_cotizaciones.services import (
    AuditService,
    AuthService,
    DiagnosticsService,
    MigrationService,
    PermissionService,
    ProviderService,
    PurchaseService,
    QuoteService,
    SyncService,
    UserService,
)
from app_cotizaciones.services.migration_service import LEGACY_FILE


class AppContainer:
    """
    Contenedor de dependencias de la aplicación.

    Implementa el patrón Singleton para asegurar una única instancia
    de cada repositorio y servicio.

    Uso:
        container = AppContainer(AppConfig.from_env())
        quote_service = container.quote_service
        sync_service = container.sync_service
    """

    _instance: Optional['AppContainer'] = None

    def __new__(cls, config: Optional[AppConfig] = None, remote: Optional[IRemoteQuoteStore] = None):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config: Optional[AppConfig] = None, remote: Optional[IRemoteQuoteStore] = None):
        """
        Inicializa el contenedor.

        Args:
            config: Configuración (por defecto AppConfig.from_env())
            remote: Almacén remoto ya construido (tests); si no se indica se
                elige según config.remote_url
        """
        if self._initialized:
            return

        self.config = config or AppConfig.from_env()
        os.makedirs(self.config.data_dir, exist_ok=True)

        self._remote: Optional[IRemoteQuoteStore] = remote

        # Repositorios (lazy loading)
        self._quote_repo: Optional[LocalQuoteRepository] = None
        self._user_repo: Optional[UserRepository] = None
        self._audit_repo: Optional[AuditRepository] = None
        self._settings_repo: Optional[SettingsRepository] = None
        self._provider_repo: Optional[ProviderRepository] = None
        self._provider_remote: Optional[IRemoteQuoteStore] = None

        # Servicios (lazy loading)
        self._audit_service: Optional[AuditService] = None
        self._permission_service: Optional[PermissionService] = None
        self._sync_service: Optional[SyncService] = None
        self._quote_service: Optional[QuoteService] = None
        self._auth_service: Optional[AuthService] = None
        self._user_service: Optional[UserService] = None
        self._purchase_service: Optional[PurchaseService] = None
        self._diagnostics_service: Optional[DiagnosticsService] = None
        self._migration_service: Optional[MigrationService] = None
        self._provider_service: Optional[ProviderService] = None

        self._initialized = True

    # =========================================================================
    # REPOSITORIOS
    # =========================================================================

    @property
    def quote_repo(self) -> LocalQuoteRepository:
        """Almacén local de cotizaciones (singleton)."""
        if self._quote_repo is None:
            self._quote_repo = LocalQuoteRepository(self.config.data_dir)
        return self._quote_repo

    @property
    def remote_store(self) -> IRemoteQuoteStore:
        """Almacén remoto (singleton)."""
        if self._remote is None:
            if self.config.remote_url:
                self._remote = HttpRemoteQuoteStore(
                    self.config.remote_url,
                    token=self.config.remote_token,
                    timeout=self.config.remote_timeout,
                )
            else:
                self._remote = JsonRemoteQuoteStore(self.config.data_dir)
        return self._remote

    @property
    def provider_remote(self) -> IRemoteQuoteStore:
        """Colección remota de proveedores (singleton)."""
        if self._provider_remote is None:
            if self.config.remote_url:
                self._provider_remote = HttpRemoteQuoteStore(
                    self.config.remote_url,
                    token=self.config.remote_token,
                    timeout=self.config.remote_timeout,
                    collection='proveedores',
                )
            else:
                self._provider_remote = JsonRemoteQuoteStore(
                    self.config.data_dir, 'remote_proveedores.json'
                )
        return self._provider_remote

    @property
    def user_repo(self) -> UserRepository:
        """Repositorio de usuarios (singleton)."""
        if self._user_repo is None:
            self._user_repo = UserRepository(self.config.data_dir)
        return self._user_repo

    @property
    def provider_repo(self) -> ProviderRepository:
        """Catálogo de proveedores (singleton)."""
        if self._provider_repo is None:
            self._provider_repo = ProviderRepository(self.config.data_dir)
        return self._provider_repo

    @property
    def audit_repo(self) -> AuditRepository:
        """Repositorio de auditoría (singleton)."""
        if self._audit_repo is None:
            self._audit_repo = AuditRepository(self.config.data_dir)
        return self._audit_repo

    @property
    def settings_repo(self) -> SettingsRepository:
        """Repositorio de configuración (singleton)."""
        if self._settings_repo is None:
            self._settings_repo = SettingsRepository(self.config.data_dir)
        return self._settings_repo

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    @property
    def audit_service(self) -> AuditService:
        """Servicio de auditoría (singleton)."""
        if self._audit_service is None:
            self._audit_service = AuditService(self.audit_repo)
        return self._audit_service

    @property
    def permission_service(self) -> PermissionService:
        """Resolución de roles y permisos (singleton)."""
        if self._permission_service is None:
            self._permission_service = PermissionService(self.user_repo)
        return self._permission_service

    @property
    def sync_service(self) -> SyncService:
        """Servicio de sincronización (singleton)."""
        if self._sync_service is None:
            self._sync_service = SyncService(
                self.quote_repo,
                self.remote_store,
                audit_service=self.audit_service,
                settings_repo=self.settings_repo,
                company_id=self.config.company_id,
                max_retries=self.config.sync_max_retries,
                backoff=self.config.sync_backoff,
                backoff_max=self.config.sync_backoff_max,
                enabled=self.config.sync_enabled,
            )
        return self._sync_service

    @property
    def quote_service(self) -> QuoteService:
        """Servicio de cotizaciones (singleton)."""
        if self._quote_service is None:
            self._quote_service = QuoteService(
                self.quote_repo,
                audit_service=self.audit_service,
                sync_service=self.sync_service,
                company_id=self.config.company_id,
            )
        return self._quote_service

    @property
    def auth_service(self) -> AuthService:
        """Servicio de autenticación (singleton)."""
        if self._auth_service is None:
            self._auth_service = AuthService(
                self.user_repo,
                audit_service=self.audit_service,
                company_id=self.config.company_id,
            )
        return self._auth_service

    @property
    def user_service(self) -> UserService:
        """Servicio de usuarios (singleton)."""
        if self._user_service is None:
            self._user_service = UserService(
                self.user_repo,
                audit_service=self.audit_service,
                company_id=self.config.company_id,
            )
        return self._user_service

    @property
    def purchase_service(self) -> PurchaseService:
        """Servicio de compras (singleton)."""
        if self._purchase_service is None:
            self._purchase_service = PurchaseService(self.quote_service, self.audit_service)
        return self._purchase_service

    @property
    def diagnostics_service(self) -> DiagnosticsService:
        """Servicio de diagnóstico (singleton)."""
        if self._diagnostics_service is None:
            self._diagnostics_service = DiagnosticsService(self.quote_repo, self.sync_service)
        return self._diagnostics_service

    @property
    def migration_service(self) -> MigrationService:
        """Servicio de importación legacy (singleton)."""
        if self._migration_service is None:
            self._migration_service = MigrationService(
                self.quote_repo,
                self.settings_repo,
                audit_service=self.audit_service,
                sync_service=self.sync_service,
                company_id=self.config.company_id,
            )
        return self._migration_service

    @property
    def provider_service(self) -> ProviderService:
        """Servicio de proveedores (singleton)."""
        if self._provider_service is None:
            self._provider_service = ProviderService(
                self.provider_repo,
                remote=self.provider_remote,
                audit_service=self.audit_service,
                company_id=self.config.company_id,
            )
        return self._provider_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def run_legacy_migration(self) -> dict:
        """Importa <data_dir>/costos-quotes.json si no se hizo antes."""
        return self.migration_service.migrate_legacy_file(
            os.path.join(self.config.data_dir, LEGACY_FILE)
        )

    def reset(self) -> None:
        """
        Reinicia todas las instancias (detiene el hilo de sincronización).
        Útil para testing o para recargar datos.
        """
        if self._sync_service is not None:
            self._sync_service.shutdown()

        self._quote_repo = None
        self._user_repo = None
        self._audit_repo = None
        self._settings_repo = None
        self._provider_repo = None
        self._provider_remote = None

        self._audit_service = None
        self._permission_service = None
        self._sync_service = None
        self._quote_service = None
        self._auth_service = None
        self._user_service = None
        self._purchase_service = None
        self._diagnostics_service = None
        self._migration_service = None
        self._provider_service = None

    @classmethod
    def get_instance(cls, config: Optional[AppConfig] = None) -> 'AppContainer':
        """
        Obtiene la instancia singleton del contenedor.

        Args:
            config: Configuración (solo se usa en la primera llamada)
        """
        if cls._instance is None:
            return cls(config)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Elimina la instancia singleton (útil para tests)."""
        if cls._instance is not None:
            cls._instance.reset()
            cls._instance = None

