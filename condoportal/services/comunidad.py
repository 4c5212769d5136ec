# condoportal/services/comunidad.py
"""CRUD auxiliar: anuncios, solicitudes de mantenimiento y espacios comunes."""
import logging
from datetime import datetime

from ..errors import NotFoundError, ValidationError
from ..gateway import get_gateway
from .autenticacion import require_admin
from .notificaciones import notify

logger = logging.getLogger(__name__)

PRIORIDADES = ('baja', 'media', 'alta', 'urgente')


def _obligatorio(valor, campo):
    valor = (valor or '').strip()
    if not valor:
        raise ValidationError(f"El campo '{campo}' es obligatorio.")
    return valor


def list_anuncios(condominio_id=None, gateway=None):
    gw = gateway or get_gateway()
    return gw.comunidad.list('anuncios', condominio_id=condominio_id, activo=True)


def create_anuncio(autor_id, titulo, contenido, categoria=None, condominio_id=None, gateway=None):
    gw = gateway or get_gateway()
    return gw.comunidad.create('anuncios', {
        'autor_usuario_id': autor_id,
        'condominio_id': condominio_id,
        'titulo': _obligatorio(titulo, 'titulo'),
        'contenido': _obligatorio(contenido, 'contenido'),
        'categoria': categoria or None,
        'activo': True,
        'fecha_publicacion': datetime.now(),
    })


def list_solicitudes_mantenimiento(usuario_id=None, gateway=None):
    gw = gateway or get_gateway()
    return gw.comunidad.list('solicitudes_mantenimiento', usuario_id=usuario_id)


def create_solicitud_mantenimiento(usuario_id, titulo, descripcion, prioridad='media', vivienda_id=None, gateway=None):
    gw = gateway or get_gateway()
    prioridad = (prioridad or 'media').lower()
    if prioridad not in PRIORIDADES:
        raise ValidationError(f"Prioridad no válida: {prioridad}")
    solicitud = gw.comunidad.create('solicitudes_mantenimiento', {
        'usuario_id': usuario_id,
        'vivienda_id': vivienda_id,
        'titulo': _obligatorio(titulo, 'titulo'),
        'descripcion': _obligatorio(descripcion, 'descripcion'),
        'prioridad': prioridad,
        'estado': 'pendiente',
        'fecha_solicitud': datetime.now(),
    })
    logger.info(f"Solicitud de mantenimiento {solicitud['id']} creada por el usuario {usuario_id}")
    return solicitud


def list_espacios(condominio_id=None, gateway=None):
    gw = gateway or get_gateway()
    return gw.comunidad.list('espacios_comunes', condominio_id=condominio_id, activo=True)


def create_espacio(usuario_id, nombre, descripcion=None, capacidad=None, condominio_id=None, gateway=None):
    gw = gateway or get_gateway()
    if capacidad is not None and capacidad < 0:
        raise ValidationError('La capacidad no puede ser negativa.')
    return gw.comunidad.create('espacios_comunes', {
        'condominio_id': condominio_id,
        'nombre': _obligatorio(nombre, 'nombre'),
        'descripcion': descripcion,
        'capacidad': capacidad,
        'creado_por': usuario_id,
        'activo': True,
        'created_at': datetime.now(),
    })


def delete_espacio(espacio_id, admin_id, gateway=None):
    """Solo administradores. Avisa a quien creó el espacio."""
    gw = gateway or get_gateway()
    admin = require_admin(admin_id, gw)
    espacio = gw.comunidad.get('espacios_comunes', espacio_id)
    if not espacio:
        raise NotFoundError(f"No existe el espacio común {espacio_id}.")
    gw.comunidad.delete('espacios_comunes', espacio_id)
    logger.info(f"Espacio común {espacio_id} eliminado por el administrador {admin_id}")

    creador = espacio.get('creado_por')
    if creador and creador != admin['id']:
        notify(creador, 'espacio_eliminado',
               f"El espacio común \"{espacio.get('nombre')}\" ha sido eliminado por la administración.",
               'espacios_comunes', espacio_id, gateway=gw)
    return True
