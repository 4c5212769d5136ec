# condoportal/services/notificaciones.py
"""
Envío de notificaciones y campana de avisos.

`notify` nunca propaga errores: si la inserción falla se registra en el log
y la operación que la originó sigue adelante.
"""
import logging
import threading
import time
from collections import OrderedDict, deque
from datetime import datetime

from flask import current_app

from ..errors import AuthorizationError, NotFoundError
from ..events import payment_events
from ..gateway import get_gateway
from ..models import PAGO_PENDIENTE, es_admin

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30
RECENTLY_SEEN_CAP = 50
BELLS_EXTENSION_KEY = 'condoportal_bells'

TITULOS_POR_TIPO = {
    'pago_aprobado': 'Pago Aprobado',
    'pago_procesado': 'Pago Aprobado',
    'pago_rechazado': 'Pago Rechazado',
    'pago_creado': 'Nuevo pago asignado',
    'nueva_solicitud_pago': 'Nueva acción requerida',
    'recuperacion_contraseña': 'Recuperación de contraseña',
    'espacio_eliminado': 'Espacio común eliminado',
    'estado_cuenta': 'Estado de cuenta actualizado',
    'solicitud_registro': 'Nueva solicitud de registro',
    'aprobacion_registro': 'Registro aprobado',
}

TITULOS_POR_ENTIDAD = {
    'pagos': 'Actualización de pago',
    'usuarios': 'Actualización de usuario',
    'espacios_comunes': 'Actualización de espacio común',
    'solicitudes_mantenimiento': 'Actualización de mantenimiento',
}


def derive_title(tipo, relacion_entidad=None):
    if tipo in TITULOS_POR_TIPO:
        return TITULOS_POR_TIPO[tipo]
    if relacion_entidad in TITULOS_POR_ENTIDAD:
        return TITULOS_POR_ENTIDAD[relacion_entidad]
    return 'Notificación'


def notify(recipient_id, tipo, mensaje, relacion_entidad=None, relacion_id=None, titulo=None,
           accion_requerida=False, gateway=None):
    """
    Crea una notificación para un usuario (fire-and-forget).

    Returns:
        dict or None: la notificación creada, o None si no se pudo crear
    """
    try:
        gw = gateway or get_gateway()
        return gw.notificaciones.create({
            'usuario_id': recipient_id,
            'tipo': tipo,
            'titulo': titulo or derive_title(tipo, relacion_entidad),
            'mensaje': mensaje,
            'leida': False,
            'accion_requerida': bool(accion_requerida),
            'relacion_entidad': relacion_entidad,
            'relacion_id': relacion_id,
            'fecha_creacion': datetime.now(),
        })
    except Exception as e:
        logger.error(f"No se pudo crear la notificación '{tipo}' para el usuario {recipient_id}: {e}")
        return None


def notify_admins(tipo, mensaje, relacion_entidad=None, relacion_id=None, titulo=None, gateway=None):
    """Una fila por administrador, marcada como acción requerida."""
    try:
        gw = gateway or get_gateway()
        admins = [u for u in gw.usuarios.list_all() if es_admin(u.get('rol'))]
    except Exception as e:
        logger.error(f"No se pudo obtener la lista de administradores para '{tipo}': {e}")
        return []
    creadas = []
    for admin in admins:
        notificacion = notify(admin['id'], tipo, mensaje, relacion_entidad, relacion_id,
                              titulo=titulo, accion_requerida=True, gateway=gw)
        if notificacion:
            creadas.append(notificacion)
    return creadas


# --- Operaciones del destinatario ---
def list_notifications(usuario_id, gateway=None):
    gw = gateway or get_gateway()
    return gw.notificaciones.list_for(usuario_id)


def unread_count(usuario_id, gateway=None):
    gw = gateway or get_gateway()
    return gw.notificaciones.count_unread(usuario_id)


def _propia(gw, notificacion_id, usuario_id):
    notificacion = gw.notificaciones.get(notificacion_id)
    if not notificacion:
        raise NotFoundError('Notificación no encontrada.')
    if notificacion.get('usuario_id') != usuario_id:
        raise AuthorizationError('No tiene permiso sobre esta notificación.')
    return notificacion


def mark_read(notificacion_id, usuario_id, gateway=None):
    gw = gateway or get_gateway()
    notificacion = _propia(gw, notificacion_id, usuario_id)
    if notificacion.get('leida'):
        return notificacion
    return gw.notificaciones.update(notificacion_id, leida=True, fecha_lectura=datetime.now())


def delete_notification(notificacion_id, usuario_id, gateway=None):
    gw = gateway or get_gateway()
    _propia(gw, notificacion_id, usuario_id)
    return gw.notificaciones.delete(notificacion_id)


def delete_read_notifications(usuario_id, gateway=None):
    gw = gateway or get_gateway()
    borradas = gw.notificaciones.delete_read(usuario_id)
    logger.info(f"{borradas} notificaciones leídas eliminadas para el usuario {usuario_id}")
    return borradas


# --- Campana ---
class NotificationBell:
    """
    Consumidor de avisos de un usuario.

    Sondea la pasarela cada `poll_interval` segundos y, para administradores,
    escucha además `payment_events` para enterarse al momento de los pagos
    nuevos en estado pendiente. Como ambos caminos pueden traer el mismo
    registro, se recuerdan los últimos `cap` identificadores vistos. La cola de
    alertas sin consumir guarda como mucho `cap` entradas; al llenarse se
    descartan las más antiguas.
    """

    def __init__(self, usuario, gateway, poll_interval=POLL_INTERVAL_SECONDS,
                 cap=RECENTLY_SEEN_CAP, clock=time.monotonic):
        self.usuario_id = usuario['id']
        self.es_admin = es_admin(usuario.get('rol'))
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.cap = cap
        self._clock = clock
        self._vistos = OrderedDict()
        self._alertas = deque(maxlen=cap)
        self._ultimo_poll = None
        self._lock = threading.Lock()
        self._suscrito = False

    def start(self):
        """Marca como vistos los avisos existentes y se suscribe a los pagos nuevos."""
        self.poll(force=True)
        self.drain()
        if self.es_admin and not self._suscrito:
            payment_events.subscribe(self.on_payment_inserted)
            self._suscrito = True
        return self

    def stop(self):
        if self._suscrito:
            payment_events.unsubscribe(self.on_payment_inserted)
            self._suscrito = False

    def _registrar(self, clave):
        """True si la clave no se había visto. Expulsa la más antigua al superar el tope."""
        with self._lock:
            if clave in self._vistos:
                return False
            self._vistos[clave] = True
            while len(self._vistos) > self.cap:
                self._vistos.popitem(last=False)
            return True

    def _encolar(self, alerta):
        with self._lock:
            self._alertas.append(alerta)

    def _alerta_pago(self, pago):
        return {
            'tipo': 'nuevo_pago',
            'pago_id': pago['id'],
            'usuario_id': pago.get('usuario_id'),
            'titulo': 'Nuevo pago pendiente de validación',
            'mensaje': f"Pago \"{pago.get('concepto')}\" pendiente de validación.",
        }

    def on_payment_inserted(self, pago):
        if (pago.get('estado') or '').lower() != PAGO_PENDIENTE:
            return
        if self._registrar(('pago', pago['id'])):
            self._encolar(self._alerta_pago(pago))

    def poll(self, force=False):
        ahora = self._clock()
        if not force and self._ultimo_poll is not None and ahora - self._ultimo_poll < self.poll_interval:
            return 0
        self._ultimo_poll = ahora
        nuevas = 0
        for notificacion in self.gateway.notificaciones.list_for(self.usuario_id):
            if notificacion.get('leida'):
                continue
            if self._registrar(('notificacion', notificacion['id'])):
                self._encolar({
                    'tipo': 'notificacion',
                    'notificacion_id': notificacion['id'],
                    'titulo': notificacion.get('titulo'),
                    'mensaje': notificacion.get('mensaje'),
                })
                nuevas += 1
        if self.es_admin:
            for pago in self.gateway.pagos.list(estados=(PAGO_PENDIENTE,)):
                if self._registrar(('pago', pago['id'])):
                    self._encolar(self._alerta_pago(pago))
                    nuevas += 1
        return nuevas

    def drain(self):
        """Devuelve y vacía las alertas acumuladas."""
        with self._lock:
            alertas = list(self._alertas)
            self._alertas.clear()
        return alertas


def get_bell(usuario, gateway=None):
    """Campana del usuario, creada y arrancada la primera vez que se pide."""
    campanas = current_app.extensions.setdefault(BELLS_EXTENSION_KEY, {})
    campana = campanas.get(usuario['id'])
    if campana is None:
        campana = NotificationBell(
            usuario,
            gateway or get_gateway(),
            poll_interval=current_app.config.get('NOTIFICATION_POLL_SECONDS', POLL_INTERVAL_SECONDS),
        ).start()
        campanas[usuario['id']] = campana
    return campana


def release_bell(usuario_id):
    """Detiene y descarta la campana del usuario (al cerrar sesión)."""
    campana = current_app.extensions.get(BELLS_EXTENSION_KEY, {}).pop(usuario_id, None)
    if campana is not None:
        campana.stop()
    return campana is not None
