# ==============================================================================
# REPOSITORIO DE USUARIOS
# ==============================================================================
# Encapsula todo el acceso a users.json
# Los perfiles se almacenan como diccionario indexado por email (minúsculas)
# ==============================================================================

import os
from typing import Any, Dict, List, Optional

from .base import DictRepository


class UserRepository(DictRepository):
    """
    Repositorio de perfiles de usuario.

    Formato de datos en users.json:
    {
        "ana@tecnophone.com": {
            "email": "ana@tecnophone.com",
            "displayName": "Ana",
            "role": "vendedor",
            "permissions": [...],
            "isActive": true,
            "password_hash": "scrypt:...",
            ...
        }
    }
    """

    def __init__(self, base_path: str):
        """
        Args:
            base_path: Carpeta de datos
        """
        file_path = os.path.join(base_path, 'users.json')
        super().__init__(file_path)

    @staticmethod
    def _key(email: str) -> str:
        return (email or '').strip().lower()

    def load(self) -> Dict[str, Dict[str, Any]]:
        """
        Carga todos los perfiles.

        Returns:
            Diccionario {email: perfil}
        """
        return self.get_all()

    def get_profile(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Obtiene un perfil por email.

        Returns:
            Datos del perfil o None
        """
        return self.load().get(self._key(email))

    def profile_exists(self, email: str) -> bool:
        return self._key(email) in self.load()

    def create_profile(self, email: str, profile: Dict[str, Any]) -> bool:
        """
        Crea un perfil nuevo.

        Returns:
            True si se creó, False si ya existía
        """
        key = self._key(email)
        with self._file_lock:
            users = self.load()
            if key in users:
                return False
            users[key] = dict(profile, email=key)
            self.save_all(users)
            return True

    def update_profile(self, email: str, updates: Dict[str, Any]) -> bool:
        """
        Actualiza campos de un perfil.

        Returns:
            True si se actualizó
        """
        key = self._key(email)
        with self._file_lock:
            users = self.load()
            if key not in users:
                return False
            users[key].update(updates)
            self.save_all(users)
            return True

    def delete_profile(self, email: str) -> bool:
        """
        Elimina un perfil.

        Returns:
            True si se eliminó
        """
        return self.delete(self._key(email)) is not None

    def get_emails_by_role(self, role: str) -> List[str]:
        """Emails de los usuarios con un rol."""
        return [
            email for email, data in self.load().items()
            if data.get('role') == role
        ]

    def count_admins(self) -> int:
        return len(self.get_emails_by_role('admin'))
