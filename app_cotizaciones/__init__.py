# ==============================================================================
# APP COTIZACIONES - Flujo de aprobación de cotizaciones
# ==============================================================================
# Cotizaciones con almacén local (JSON) como fuente de verdad de la sesión y
# un almacén remoto compartido que se sincroniza en segundo plano.
#
#   from app_cotizaciones.main import create_app
#   app = create_app()
# ==============================================================================

__version__ = '1.0.0'
