# condoportal/gateway/snapshot.py
"""
Almacén local de respaldo: un documento JSON de pares clave-valor.

La clave `mockDatabase_condominio` guarda el snapshot completo de las tablas
({tabla: [filas]}) y `forum_topics_ciudad_colonial` el estado del foro, que
se conserva tal cual. El documento se lee y se reescribe entero en cada
mutación, sin bloqueo: dos procesos escribiendo a la vez pierden cambios
(gana la última escritura). Sin ruta, el almacén vive solo en memoria.
"""
import copy
import json
import logging
import os
from datetime import datetime, date
from decimal import Decimal

from ..errors import NotFoundError, TransientBackendError
from ..events import payment_events
from ..models import ESTADO_ACTIVO, ESTADO_MOROSO, ESTADOS_ADEUDADOS, ROLES_ADMIN
from .base import (
    UsuarioRepository, ViviendaRepository, PagoRepository, HistorialPagoRepository,
    ArchivoRepository, NotificacionRepository, ComunidadRepository,
)

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = 'mockDatabase_condominio'
FORUM_KEY = 'forum_topics_ciudad_colonial'

TABLAS = (
    'usuarios', 'condominios', 'viviendas', 'usuario_vivienda', 'pagos', 'historial_pagos',
    'archivos', 'notificaciones', 'anuncios', 'solicitudes_mantenimiento', 'espacios_comunes',
)


def _json_default(valor):
    if isinstance(valor, (datetime, date)):
        return valor.isoformat()
    if isinstance(valor, Decimal):
        return float(valor)
    raise TypeError(f"Tipo no serializable en el snapshot: {type(valor).__name__}")


def to_json_row(fila):
    """Normaliza una fila a tipos JSON, igual que la serialización SQL."""
    return json.loads(json.dumps(fila, default=_json_default))


class SnapshotStore:

    def __init__(self, path=None):
        self.path = path
        self._memoria = {}

    # --- Documento completo ---
    def read_document(self):
        if self.path is None:
            return copy.deepcopy(self._memoria)
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise TransientBackendError(f"No se pudo leer el snapshot local '{self.path}': {e}") from e

    def write_document(self, documento):
        if self.path is None:
            self._memoria = copy.deepcopy(documento)
            return
        try:
            directorio = os.path.dirname(self.path)
            if directorio:
                os.makedirs(directorio, exist_ok=True)
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(documento, f, ensure_ascii=False, default=_json_default)
        except OSError as e:
            raise TransientBackendError(f"No se pudo escribir el snapshot local '{self.path}': {e}") from e

    # --- Tablas ---
    def tables(self):
        tablas = self.read_document().get(SNAPSHOT_KEY) or {}
        return {nombre: tablas.get(nombre, []) for nombre in TABLAS}

    def read_table(self, tabla):
        return self.tables()[tabla]

    def replace_tables(self, tablas):
        """Sustituye el snapshot de tablas completo (carga de datos de demo)."""
        documento = self.read_document()
        documento[SNAPSHOT_KEY] = {nombre: [to_json_row(f) for f in tablas.get(nombre, [])] for nombre in TABLAS}
        self.write_document(documento)

    def _mutate(self, tabla, operacion):
        documento = self.read_document()
        tablas = documento.setdefault(SNAPSHOT_KEY, {})
        filas = tablas.setdefault(tabla, [])
        resultado = operacion(filas)
        self.write_document(documento)
        return resultado

    def insert(self, tabla, fila):
        fila = to_json_row(fila)

        def operacion(filas):
            if fila.get('id') is None:
                fila['id'] = max((f['id'] for f in filas), default=0) + 1
            filas.append(fila)
            return dict(fila)
        return self._mutate(tabla, operacion)

    def update(self, tabla, registro_id, campos):
        campos = to_json_row(campos)

        def operacion(filas):
            for fila in filas:
                if fila.get('id') == registro_id:
                    fila.update(campos)
                    return dict(fila)
            return None
        return self._mutate(tabla, operacion)

    def delete_where(self, tabla, predicado):
        def operacion(filas):
            conservar = [f for f in filas if not predicado(f)]
            borradas = len(filas) - len(conservar)
            filas[:] = conservar
            return borradas
        return self._mutate(tabla, operacion)


class _SnapshotTabla:
    tabla = None

    def __init__(self, store):
        self.store = store

    def _filas(self):
        return self.store.read_table(self.tabla)

    def get(self, registro_id):
        for fila in self._filas():
            if fila.get('id') == registro_id:
                return fila
        return None

    def create(self, datos):
        return self.store.insert(self.tabla, datos)

    def update(self, registro_id, **campos):
        fila = self.store.update(self.tabla, registro_id, campos)
        if fila is None:
            raise NotFoundError(f"No existe el registro {registro_id} en '{self.tabla}'.")
        return fila


class SnapshotUsuarioRepository(_SnapshotTabla, UsuarioRepository):
    tabla = 'usuarios'

    def create(self, datos):
        datos = dict(datos)
        datos.setdefault('estado', ESTADO_ACTIVO)
        datos.setdefault('created_at', datetime.now())
        return super().create(datos)

    def find_by_email(self, correo):
        correo = (correo or '').strip().lower()
        for fila in self._filas():
            if (fila.get('correo') or '').lower() == correo:
                return fila
        return None

    def list_all(self):
        return sorted(self._filas(), key=lambda f: f['id'])

    def list_pending(self):
        pendientes = [f for f in self._filas() if f.get('rol') is None]
        return sorted(pendientes, key=lambda f: (f.get('created_at') or '', f['id']), reverse=True)

    def delete(self, usuario_id):
        self.store.delete_where('usuario_vivienda', lambda f: f.get('usuario_id') == usuario_id)
        self.store.delete_where('notificaciones', lambda f: f.get('usuario_id') == usuario_id)
        return self.store.delete_where(self.tabla, lambda f: f.get('id') == usuario_id) > 0

    def mark_overdue_residents(self, hoy):
        from ..services.morosidad import tiene_obligacion_vencida
        pagos = self.store.read_table('pagos')
        marcados = 0
        for usuario in self.list_all():
            if (usuario.get('rol') or '').strip().lower() in ROLES_ADMIN:
                continue
            if usuario.get('estado') == ESTADO_MOROSO:
                continue
            propios = [p for p in pagos if p.get('usuario_id') == usuario['id'] and p.get('estado') in ESTADOS_ADEUDADOS]
            if tiene_obligacion_vencida(propios, hoy):
                self.update(usuario['id'], estado=ESTADO_MOROSO)
                marcados += 1
        return marcados


class SnapshotViviendaRepository(_SnapshotTabla, ViviendaRepository):
    tabla = 'viviendas'

    def create(self, datos):
        datos = dict(datos)
        datos.setdefault('activo', True)
        return super().create(datos)

    def find_by_numero(self, numero_vivienda, condominio_id=None):
        numero = (numero_vivienda or '').strip().lower()
        for fila in self._filas():
            if (fila.get('numero_vivienda') or '').strip().lower() != numero:
                continue
            if condominio_id is not None and fila.get('condominio_id') != condominio_id:
                continue
            return fila
        return None

    def _vinculos_activos(self, usuario_id):
        return [v for v in self.store.read_table('usuario_vivienda')
                if v.get('usuario_id') == usuario_id and v.get('activo', True)]

    def link_resident(self, usuario_id, vivienda_id, tipo_relacion='residente', activo=True):
        for vinculo in self.store.read_table('usuario_vivienda'):
            if vinculo.get('usuario_id') == usuario_id and vinculo.get('vivienda_id') == vivienda_id:
                return self.store.update('usuario_vivienda', vinculo['id'], {'activo': activo, 'tipo_relacion': tipo_relacion})
        return self.store.insert('usuario_vivienda', {
            'usuario_id': usuario_id,
            'vivienda_id': vivienda_id,
            'tipo_relacion': tipo_relacion,
            'activo': activo,
            'fecha_inicio': date.today(),
        })

    def activate_links(self, usuario_id):
        inactivos = [v for v in self.store.read_table('usuario_vivienda')
                     if v.get('usuario_id') == usuario_id and not v.get('activo', True)]
        for vinculo in inactivos:
            self.store.update('usuario_vivienda', vinculo['id'], {'activo': True})
        return len(inactivos)

    def resolve_for_resident(self, usuario_id, numero_vivienda):
        numero = (numero_vivienda or '').strip().lower()
        if not numero:
            return None
        ids = {v['vivienda_id'] for v in self._vinculos_activos(usuario_id)}
        for fila in self._filas():
            if fila['id'] in ids and (fila.get('numero_vivienda') or '').strip().lower() == numero:
                return fila['id']
        return None

    def list_for_resident(self, usuario_id):
        ids = {v['vivienda_id'] for v in self._vinculos_activos(usuario_id)}
        return [f for f in sorted(self._filas(), key=lambda f: f['id']) if f['id'] in ids]


class SnapshotPagoRepository(_SnapshotTabla, PagoRepository):
    tabla = 'pagos'

    def create(self, datos):
        datos = dict(datos)
        datos.setdefault('created_at', datetime.now())
        pago = super().create(datos)
        payment_events.publish(dict(pago))
        return pago

    def list(self, usuario_id=None, estados=None):
        filas = self._filas()
        if usuario_id is not None:
            filas = [f for f in filas if f.get('usuario_id') == usuario_id]
        if estados:
            filas = [f for f in filas if f.get('estado') in estados]
        return sorted(filas, key=lambda f: f['id'], reverse=True)


class SnapshotHistorialPagoRepository(_SnapshotTabla, HistorialPagoRepository):
    tabla = 'historial_pagos'

    def add(self, pago_id, evento, usuario_actor_id=None, datos=None):
        return self.create({
            'pago_id': pago_id,
            'evento': evento,
            'usuario_actor_id': usuario_actor_id,
            'datos': datos,
            'fecha_evento': datetime.now(),
        })

    def list_for(self, pago_id):
        return sorted((f for f in self._filas() if f.get('pago_id') == pago_id), key=lambda f: f['id'])


class SnapshotArchivoRepository(_SnapshotTabla, ArchivoRepository):
    tabla = 'archivos'

    def create(self, datos):
        datos = dict(datos)
        datos.setdefault('created_at', datetime.now())
        return super().create(datos)


class SnapshotNotificacionRepository(_SnapshotTabla, NotificacionRepository):
    tabla = 'notificaciones'

    def create(self, datos):
        datos = dict(datos)
        datos.setdefault('leida', False)
        datos.setdefault('accion_requerida', False)
        datos.setdefault('fecha_creacion', datetime.now())
        return super().create(datos)

    def delete(self, notificacion_id):
        return self.store.delete_where(self.tabla, lambda f: f.get('id') == notificacion_id) > 0

    def list_for(self, usuario_id):
        propias = [f for f in self._filas() if f.get('usuario_id') == usuario_id]
        return sorted(propias, key=lambda f: (bool(f.get('leida')), -f['id']))

    def delete_read(self, usuario_id):
        return self.store.delete_where(
            self.tabla, lambda f: f.get('usuario_id') == usuario_id and f.get('leida'))

    def count_unread(self, usuario_id):
        return sum(1 for f in self._filas() if f.get('usuario_id') == usuario_id and not f.get('leida'))


class SnapshotComunidadRepository(ComunidadRepository):

    def __init__(self, store):
        self.store = store

    def _tabla(self, tabla):
        if tabla not in self.TABLAS:
            raise ValueError(f"Tabla de comunidad desconocida: {tabla}")
        return tabla

    def list(self, tabla, **filtros):
        filas = self.store.read_table(self._tabla(tabla))
        for campo, valor in filtros.items():
            if valor is not None:
                filas = [f for f in filas if f.get(campo) == valor]
        return sorted(filas, key=lambda f: f['id'], reverse=True)

    def get(self, tabla, registro_id):
        for fila in self.store.read_table(self._tabla(tabla)):
            if fila.get('id') == registro_id:
                return fila
        return None

    def create(self, tabla, datos):
        return self.store.insert(self._tabla(tabla), datos)

    def delete(self, tabla, registro_id):
        return self.store.delete_where(self._tabla(tabla), lambda f: f.get('id') == registro_id) > 0
