# ==============================================================================
# WSGI Entry Point - Para Gunicorn en Producción
# ==============================================================================
# Este archivo es el punto de entrada para servidores WSGI como Gunicorn.
#
# USO:
#   gunicorn wsgi:app --bind 0.0.0.0:$PORT
#
# ESTRUCTURA DEL PROYECTO:
#   repo_root/              <- Directorio de trabajo (en sys.path automáticamente)
#   ├── wsgi.py             <- Este archivo
#   ├── pyproject.toml
#   └── app_cotizaciones/   <- Paquete Python
#       ├── __init__.py
#       ├── main.py
#       ├── services/
#       └── repositories/
#
# La configuración se lee del entorno (COTIZ_DATA_DIR, COTIZ_REMOTE_URL, ...).
# ==============================================================================

from app_cotizaciones.main import create_app

app = create_app()

# ==============================================================================
# PUNTO DE ENTRADA
# ==============================================================================
# Variable 'app' exportada para Gunicorn:
#   gunicorn wsgi:app
#
# Para desarrollo local:
#   python wsgi.py
# ==============================================================================

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
