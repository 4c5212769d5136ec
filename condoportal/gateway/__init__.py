# condoportal/gateway/__init__.py
"""
Pasarela de persistencia: agrupa un repositorio por entidad.

Con DATA_BACKEND='sql' se usa Flask-SQLAlchemy. Con 'snapshot' (almacén
remoto no configurado, modo demo) todo se resuelve contra el snapshot JSON
local. En modo SQL con LOCAL_SNAPSHOT_FALLBACK activo, las lecturas y las
búsquedas de autenticación que fallan por TransientBackendError se sirven
desde el snapshot. Los pagos nunca usan el respaldo.
"""
import logging

from flask import current_app

from ..errors import TransientBackendError
from .snapshot import (
    SnapshotStore, SnapshotUsuarioRepository, SnapshotViviendaRepository, SnapshotPagoRepository,
    SnapshotHistorialPagoRepository, SnapshotArchivoRepository, SnapshotNotificacionRepository,
    SnapshotComunidadRepository,
)
from .sql import (
    SqlUsuarioRepository, SqlViviendaRepository, SqlPagoRepository, SqlHistorialPagoRepository,
    SqlArchivoRepository, SqlNotificacionRepository, SqlComunidadRepository,
)

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'condoportal_gateway'

# Operaciones de lectura/autenticación que admiten el respaldo local
FALLBACK_OPERATIONS = {
    'usuarios': ('get', 'find_by_email'),
    'notificaciones': ('list_for', 'count_unread'),
    'comunidad': ('list', 'get'),
}


class Gateway:
    def __init__(self, usuarios, viviendas, pagos, historial, archivos, notificaciones, comunidad, backend):
        self.usuarios = usuarios
        self.viviendas = viviendas
        self.pagos = pagos
        self.historial = historial
        self.archivos = archivos
        self.notificaciones = notificaciones
        self.comunidad = comunidad
        self.backend = backend

    def __repr__(self):
        return f'<Gateway {self.backend}>'


class ReadFallback:
    """
    Envuelve un repositorio principal: las operaciones indicadas se reintentan
    contra el repositorio de respaldo si el principal lanza TransientBackendError.
    El resto de atributos se delegan sin cambios.
    """

    def __init__(self, principal, respaldo, operaciones):
        self._principal = principal
        self._respaldo = respaldo
        self._operaciones = set(operaciones)

    def __getattr__(self, nombre):
        metodo = getattr(self._principal, nombre)
        if nombre not in self._operaciones:
            return metodo

        def con_respaldo(*args, **kwargs):
            try:
                return metodo(*args, **kwargs)
            except TransientBackendError as e:
                logger.warning(f"Backend remoto no disponible en '{nombre}', usando snapshot local: {e}")
                return getattr(self._respaldo, nombre)(*args, **kwargs)
        return con_respaldo


def snapshot_gateway(store):
    return Gateway(
        usuarios=SnapshotUsuarioRepository(store),
        viviendas=SnapshotViviendaRepository(store),
        pagos=SnapshotPagoRepository(store),
        historial=SnapshotHistorialPagoRepository(store),
        archivos=SnapshotArchivoRepository(store),
        notificaciones=SnapshotNotificacionRepository(store),
        comunidad=SnapshotComunidadRepository(store),
        backend='snapshot',
    )


def sql_gateway(respaldo=None):
    gateway = Gateway(
        usuarios=SqlUsuarioRepository(),
        viviendas=SqlViviendaRepository(),
        pagos=SqlPagoRepository(),
        historial=SqlHistorialPagoRepository(),
        archivos=SqlArchivoRepository(),
        notificaciones=SqlNotificacionRepository(),
        comunidad=SqlComunidadRepository(),
        backend='sql',
    )
    if respaldo is not None:
        for entidad, operaciones in FALLBACK_OPERATIONS.items():
            setattr(gateway, entidad, ReadFallback(getattr(gateway, entidad), getattr(respaldo, entidad), operaciones))
    return gateway


def build_gateway(config):
    backend = (config.get('DATA_BACKEND') or 'sql').lower()
    store = SnapshotStore(config.get('LOCAL_SNAPSHOT_PATH'))
    if backend == 'snapshot':
        logger.warning("DATA_BACKEND=snapshot: usando el almacén local (modo demostración).")
        return snapshot_gateway(store)
    if backend != 'sql':
        raise ValueError(f"DATA_BACKEND desconocido: {backend}")
    respaldo = snapshot_gateway(store) if config.get('LOCAL_SNAPSHOT_FALLBACK') else None
    return sql_gateway(respaldo)


def init_gateway(app):
    app.extensions[EXTENSION_KEY] = build_gateway(app.config)
    app.logger.info(f"Pasarela de persistencia inicializada: {app.extensions[EXTENSION_KEY]!r}")


def get_gateway():
    return current_app.extensions[EXTENSION_KEY]
