# condoportal/gateway/base.py
"""
Interfaces de repositorio, una por entidad.

Todas las implementaciones devuelven filas como dicts con valores aptos para
JSON (fechas en ISO 8601, importes como float), de modo que la lógica de
negocio es la misma sobre SQL o sobre el snapshot local. Los fallos del
almacén se traducen a TransientBackendError.
"""
from abc import ABC, abstractmethod


class UsuarioRepository(ABC):

    @abstractmethod
    def get(self, usuario_id):
        """Devuelve el usuario o None."""

    @abstractmethod
    def find_by_email(self, correo):
        """Búsqueda por correo, sin distinguir mayúsculas."""

    @abstractmethod
    def list_all(self):
        """Todos los usuarios, ordenados por id."""

    @abstractmethod
    def create(self, datos):
        pass

    @abstractmethod
    def update(self, usuario_id, **campos):
        """Actualiza y devuelve la fila. NotFoundError si no existe."""

    @abstractmethod
    def list_pending(self):
        """Registros sin rol asignado, los más recientes primero."""

    @abstractmethod
    def delete(self, usuario_id):
        """Borra el usuario junto con sus vínculos de vivienda y sus notificaciones. True si existía."""

    @abstractmethod
    def mark_overdue_residents(self, hoy):
        """
        Barrido masivo: marca Moroso a todo residente no administrador con
        algún pago adeudado vencido antes de `hoy`.

        Returns:
            int: número de usuarios marcados
        """


class ViviendaRepository(ABC):

    @abstractmethod
    def get(self, vivienda_id):
        pass

    @abstractmethod
    def find_by_numero(self, numero_vivienda, condominio_id=None):
        pass

    @abstractmethod
    def create(self, datos):
        pass

    @abstractmethod
    def link_resident(self, usuario_id, vivienda_id, tipo_relacion='residente', activo=True):
        """Crea (o actualiza) la relación usuario-vivienda."""

    @abstractmethod
    def activate_links(self, usuario_id):
        """Activa todas las relaciones del usuario. Devuelve cuántas cambiaron."""

    @abstractmethod
    def resolve_for_resident(self, usuario_id, numero_vivienda):
        """
        Verificación residente-vivienda.

        Returns:
            int or None: id de la vivienda con ese número vinculada activamente al usuario
        """

    @abstractmethod
    def list_for_resident(self, usuario_id):
        """Viviendas con relación activa para el usuario."""


class PagoRepository(ABC):

    @abstractmethod
    def get(self, pago_id):
        pass

    @abstractmethod
    def create(self, datos):
        pass

    @abstractmethod
    def update(self, pago_id, **campos):
        pass

    @abstractmethod
    def list(self, usuario_id=None, estados=None):
        """Pagos filtrados, más recientes primero."""


class HistorialPagoRepository(ABC):

    @abstractmethod
    def add(self, pago_id, evento, usuario_actor_id=None, datos=None):
        pass

    @abstractmethod
    def list_for(self, pago_id):
        pass


class ArchivoRepository(ABC):

    @abstractmethod
    def get(self, archivo_id):
        pass

    @abstractmethod
    def create(self, datos):
        pass

    @abstractmethod
    def update(self, archivo_id, **campos):
        pass


class NotificacionRepository(ABC):

    @abstractmethod
    def get(self, notificacion_id):
        pass

    @abstractmethod
    def create(self, datos):
        pass

    @abstractmethod
    def update(self, notificacion_id, **campos):
        pass

    @abstractmethod
    def delete(self, notificacion_id):
        pass

    @abstractmethod
    def list_for(self, usuario_id):
        """No leídas primero, luego las más recientes."""

    @abstractmethod
    def delete_read(self, usuario_id):
        """Borra las leídas del usuario y devuelve cuántas eran."""

    @abstractmethod
    def count_unread(self, usuario_id):
        pass


class ComunidadRepository(ABC):
    """CRUD genérico para anuncios, solicitudes de mantenimiento y espacios comunes."""

    TABLAS = ('anuncios', 'solicitudes_mantenimiento', 'espacios_comunes')

    @abstractmethod
    def list(self, tabla, **filtros):
        pass

    @abstractmethod
    def get(self, tabla, registro_id):
        pass

    @abstractmethod
    def create(self, tabla, datos):
        pass

    @abstractmethod
    def delete(self, tabla, registro_id):
        """Devuelve True si existía."""
