# condoportal/utils/resident_session.py
"""
Contexto de sesión del residente autenticado.

Este módulo proporciona:
- Una copia del residente (id, nombre, correo, rol, estado) guardada en la sesión
- La reconciliación de esa copia con la pasarela de persistencia
- La invalidación inmediata cuando la rutina de morosidad cambia un estado
"""
import logging
import threading
import time

from flask import session, current_app
from flask_login import UserMixin

from ..errors import CondoPortalError
from ..events import status_events
from ..models import ESTADO_ACTIVO, ESTADO_MOROSO, es_admin

logger = logging.getLogger(__name__)

# Clave para almacenar el residente en la sesión
RESIDENT_SESSION_KEY = 'residente'
CAMPOS_SESION = ('id', 'nombre', 'correo', 'rol', 'estado')
CAMPOS_RECONCILIADOS = ('estado', 'rol', 'nombre')
STATUS_RECHECK_SECONDS = 5

_invalidados = set()
_invalidados_lock = threading.Lock()


def invalidate(resident_id):
    """Fuerza la relectura del estado del residente en su próxima petición."""
    with _invalidados_lock:
        _invalidados.add(resident_id)


def _consumir_invalidacion(resident_id):
    with _invalidados_lock:
        if resident_id in _invalidados:
            _invalidados.discard(resident_id)
            return True
        return False


def _on_status_change(cambio):
    invalidate(cambio['resident_id'])


def subscribe_to_status_events(bus=status_events):
    bus.subscribe(_on_status_change)


class CurrentResident(UserMixin):
    """Usuario de Flask-Login construido a partir de la copia de sesión."""

    def __init__(self, datos):
        self.refresh(datos)

    def refresh(self, datos):
        self.id = datos['id']
        self.nombre = datos.get('nombre')
        self.correo = datos.get('correo')
        self.rol = datos.get('rol')
        self.estado = datos.get('estado') or ESTADO_ACTIVO

    @property
    def is_admin(self):
        return es_admin(self.rol)

    @property
    def is_moroso(self):
        return self.estado == ESTADO_MOROSO

    def to_dict(self):
        return {'id': self.id, 'nombre': self.nombre, 'correo': self.correo, 'rol': self.rol, 'estado': self.estado}

    def __repr__(self):
        return f'<CurrentResident {self.id}: {self.correo} [{self.rol}] {self.estado}>'


class SessionContext:
    """
    Envoltorio explícito sobre el almacén de sesión.

    Args:
        store (MutableMapping): la sesión de Flask, o un dict en pruebas.
        recheck_seconds (int): antigüedad máxima de la copia antes de releerla.
        clock (callable): reloj en segundos.
    """

    def __init__(self, store, recheck_seconds=STATUS_RECHECK_SECONDS, clock=time.time):
        self._store = store
        self.recheck_seconds = recheck_seconds
        self._clock = clock

    @classmethod
    def current(cls):
        return cls(session, current_app.config.get('STATUS_RECHECK_SECONDS', STATUS_RECHECK_SECONDS))

    @property
    def snapshot(self):
        return self._store.get(RESIDENT_SESSION_KEY)

    @property
    def resident_id(self):
        snapshot = self.snapshot
        return snapshot['id'] if snapshot else None

    @property
    def is_authenticated(self):
        return self.snapshot is not None

    @property
    def is_moroso(self):
        snapshot = self.snapshot
        return bool(snapshot) and snapshot.get('estado') == ESTADO_MOROSO

    def _guardar(self, snapshot):
        # Reasignar para que Flask marque la sesión como modificada
        self._store[RESIDENT_SESSION_KEY] = snapshot

    def start(self, usuario):
        snapshot = {campo: usuario.get(campo) for campo in CAMPOS_SESION}
        snapshot['estado'] = snapshot.get('estado') or ESTADO_ACTIVO
        snapshot['verificado_en'] = self._clock()
        self._guardar(snapshot)
        logger.info(f"Sesión iniciada para el residente {snapshot['id']} (estado {snapshot['estado']})")
        return snapshot

    def clear(self):
        snapshot = self._store.pop(RESIDENT_SESSION_KEY, None)
        if snapshot:
            logger.info(f"Sesión cerrada para el residente {snapshot.get('id')}")

    def needs_recheck(self):
        snapshot = self.snapshot
        if not snapshot:
            return False
        verificado_en = snapshot.get('verificado_en') or 0
        return self._clock() - verificado_en >= self.recheck_seconds

    def reconcile(self, gateway, force=False):
        """
        Relee al residente si la copia es antigua o si su estado fue invalidado,
        y corrige estado, rol y nombre en la sesión si difieren.

        Returns:
            bool: True si la copia de sesión cambió
        """
        snapshot = self.snapshot
        if not snapshot:
            return False
        resident_id = snapshot['id']
        invalidado = _consumir_invalidacion(resident_id)
        if not (force or invalidado or self.needs_recheck()):
            return False

        try:
            usuario = gateway.usuarios.get(resident_id)
        except CondoPortalError as e:
            logger.warning(f"No se pudo reconciliar la sesión del residente {resident_id}, se mantiene la copia: {e}")
            return False
        if usuario is None:
            logger.warning(f"Residente {resident_id} de la sesión ya no existe en la pasarela")
            return False

        snapshot = dict(snapshot)
        cambios = {}
        for campo in CAMPOS_RECONCILIADOS:
            valor = usuario.get(campo)
            if campo == 'estado':
                valor = valor or ESTADO_ACTIVO
            if valor != snapshot.get(campo):
                cambios[campo] = valor
        snapshot.update(cambios)
        snapshot['verificado_en'] = self._clock()
        self._guardar(snapshot)
        if cambios:
            logger.info(f"Sesión del residente {resident_id} actualizada: {cambios}")
        return bool(cambios)
