# condoportal/gateway/sql.py
"""
Repositorios sobre Flask-SQLAlchemy.

Cada operación hace commit por sí misma (no hay transacción que agrupe
varias filas). Los SQLAlchemyError se traducen a TransientBackendError tras
hacer rollback de la sesión.
"""
import logging
from datetime import datetime, date
from functools import wraps

from sqlalchemy import event, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from .. import db
from ..errors import NotFoundError, TransientBackendError
from ..events import payment_events
from ..models import (
    Usuario, Vivienda, UsuarioVivienda, Pago, HistorialPago, Archivo, Notificacion,
    Anuncio, SolicitudMantenimiento, EspacioComun,
    ESTADO_MOROSO, ESTADOS_ADEUDADOS, ROLES_ADMIN,
)
from .base import (
    UsuarioRepository, ViviendaRepository, PagoRepository, HistorialPagoRepository,
    ArchivoRepository, NotificacionRepository, ComunidadRepository,
)

logger = logging.getLogger(__name__)

PAGOS_SIN_CONFIRMAR_KEY = 'condoportal_pagos_sin_confirmar'


# Los pagos insertados se anuncian solo cuando la transacción se confirma
@event.listens_for(Pago, 'after_insert')
def _anotar_pago_insertado(mapper, connection, target):
    sesion = object_session(target)
    sesion.info.setdefault(PAGOS_SIN_CONFIRMAR_KEY, []).append(target.to_dict())


@event.listens_for(Session, 'after_commit')
def _publicar_pagos_confirmados(sesion):
    for pago in sesion.info.pop(PAGOS_SIN_CONFIRMAR_KEY, []):
        payment_events.publish(pago)


@event.listens_for(Session, 'after_rollback')
def _descartar_pagos_sin_confirmar(sesion):
    descartados = sesion.info.pop(PAGOS_SIN_CONFIRMAR_KEY, [])
    if descartados:
        logger.warning(f"{len(descartados)} pagos insertados se descartaron por rollback; no se anuncian.")


def _traducir_errores(f):
    """Rollback y TransientBackendError ante cualquier fallo de SQLAlchemy."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error de base de datos en {f.__qualname__}: {e}")
            raise TransientBackendError(f"Error de base de datos: {e}") from e
    return wrapper


def _coercionar(modelo, datos):
    """Filtra columnas desconocidas y convierte fechas ISO a objetos date/datetime."""
    columnas = modelo.__table__.columns
    resultado = {}
    for clave, valor in datos.items():
        if clave not in columnas:
            continue
        tipo = columnas[clave].type
        if isinstance(tipo, db.DateTime):
            if isinstance(valor, str):
                valor = datetime.fromisoformat(valor.replace('Z', '+00:00'))
            elif isinstance(valor, date) and not isinstance(valor, datetime):
                valor = datetime(valor.year, valor.month, valor.day)
        elif isinstance(tipo, db.Date):
            if isinstance(valor, str):
                valor = date.fromisoformat(valor[:10])
            elif isinstance(valor, datetime):
                valor = valor.date()
        resultado[clave] = valor
    return resultado


class _SqlTabla:
    modelo = None

    @_traducir_errores
    def get(self, registro_id):
        obj = db.session.get(self.modelo, registro_id)
        return obj.to_dict() if obj else None

    @_traducir_errores
    def create(self, datos):
        obj = self.modelo(**_coercionar(self.modelo, datos))
        db.session.add(obj)
        db.session.commit()
        return obj.to_dict()

    @_traducir_errores
    def update(self, registro_id, **campos):
        obj = db.session.get(self.modelo, registro_id)
        if not obj:
            raise NotFoundError(f"No existe el registro {registro_id} en '{self.modelo.__tablename__}'.")
        for clave, valor in _coercionar(self.modelo, campos).items():
            setattr(obj, clave, valor)
        db.session.commit()
        return obj.to_dict()


class SqlUsuarioRepository(_SqlTabla, UsuarioRepository):
    modelo = Usuario

    @_traducir_errores
    def find_by_email(self, correo):
        correo = (correo or '').strip().lower()
        obj = Usuario.query.filter(func.lower(Usuario.correo) == correo).first()
        return obj.to_dict() if obj else None

    @_traducir_errores
    def list_all(self):
        return [u.to_dict() for u in Usuario.query.order_by(Usuario.id).all()]

    @_traducir_errores
    def list_pending(self):
        pendientes = Usuario.query.filter(Usuario.rol.is_(None)).order_by(
            Usuario.created_at.desc(), Usuario.id.desc()).all()
        return [u.to_dict() for u in pendientes]

    @_traducir_errores
    def delete(self, usuario_id):
        obj = db.session.get(Usuario, usuario_id)
        if not obj:
            return False
        UsuarioVivienda.query.filter_by(usuario_id=usuario_id).delete(synchronize_session=False)
        Notificacion.query.filter_by(usuario_id=usuario_id).delete(synchronize_session=False)
        db.session.delete(obj)
        db.session.commit()
        return True

    @_traducir_errores
    def mark_overdue_residents(self, hoy):
        con_deuda_vencida = select(Pago.usuario_id).where(
            Pago.estado.in_(ESTADOS_ADEUDADOS),
            Pago.fecha_vencimiento.isnot(None),
            Pago.fecha_vencimiento < hoy,
        )
        marcados = Usuario.query.filter(
            Usuario.id.in_(con_deuda_vencida),
            func.lower(func.coalesce(Usuario.rol, '')).not_in(ROLES_ADMIN),
            or_(Usuario.estado.is_(None), Usuario.estado != ESTADO_MOROSO),
        ).update({Usuario.estado: ESTADO_MOROSO}, synchronize_session=False)
        db.session.commit()
        return marcados


class SqlViviendaRepository(_SqlTabla, ViviendaRepository):
    modelo = Vivienda

    @_traducir_errores
    def find_by_numero(self, numero_vivienda, condominio_id=None):
        numero = (numero_vivienda or '').strip().lower()
        query = Vivienda.query.filter(func.lower(func.trim(Vivienda.numero_vivienda)) == numero)
        if condominio_id is not None:
            query = query.filter(Vivienda.condominio_id == condominio_id)
        obj = query.order_by(Vivienda.id).first()
        return obj.to_dict() if obj else None

    @_traducir_errores
    def link_resident(self, usuario_id, vivienda_id, tipo_relacion='residente', activo=True):
        vinculo = UsuarioVivienda.query.filter_by(usuario_id=usuario_id, vivienda_id=vivienda_id).first()
        if vinculo:
            vinculo.activo = activo
            vinculo.tipo_relacion = tipo_relacion
        else:
            vinculo = UsuarioVivienda(usuario_id=usuario_id, vivienda_id=vivienda_id, tipo_relacion=tipo_relacion, activo=activo)
            db.session.add(vinculo)
        db.session.commit()
        return vinculo.to_dict()

    @_traducir_errores
    def activate_links(self, usuario_id):
        activados = UsuarioVivienda.query.filter(
            UsuarioVivienda.usuario_id == usuario_id,
            UsuarioVivienda.activo.is_(False),
        ).update({UsuarioVivienda.activo: True}, synchronize_session=False)
        db.session.commit()
        return activados

    @_traducir_errores
    def resolve_for_resident(self, usuario_id, numero_vivienda):
        numero = (numero_vivienda or '').strip().lower()
        if not numero:
            return None
        fila = db.session.query(Vivienda.id).join(
            UsuarioVivienda, UsuarioVivienda.vivienda_id == Vivienda.id
        ).filter(
            UsuarioVivienda.usuario_id == usuario_id,
            UsuarioVivienda.activo.is_(True),
            func.lower(func.trim(Vivienda.numero_vivienda)) == numero,
        ).order_by(Vivienda.id).first()
        return fila[0] if fila else None

    @_traducir_errores
    def list_for_resident(self, usuario_id):
        viviendas = Vivienda.query.join(
            UsuarioVivienda, UsuarioVivienda.vivienda_id == Vivienda.id
        ).filter(
            UsuarioVivienda.usuario_id == usuario_id,
            UsuarioVivienda.activo.is_(True),
        ).order_by(Vivienda.id).all()
        return [v.to_dict() for v in viviendas]


class SqlPagoRepository(_SqlTabla, PagoRepository):
    modelo = Pago

    @_traducir_errores
    def list(self, usuario_id=None, estados=None):
        query = Pago.query
        if usuario_id is not None:
            query = query.filter(Pago.usuario_id == usuario_id)
        if estados:
            query = query.filter(Pago.estado.in_(list(estados)))
        return [p.to_dict() for p in query.order_by(Pago.id.desc()).all()]


class SqlHistorialPagoRepository(_SqlTabla, HistorialPagoRepository):
    modelo = HistorialPago

    def add(self, pago_id, evento, usuario_actor_id=None, datos=None):
        return self.create({
            'pago_id': pago_id,
            'evento': evento,
            'usuario_actor_id': usuario_actor_id,
            'datos': datos,
        })

    @_traducir_errores
    def list_for(self, pago_id):
        filas = HistorialPago.query.filter_by(pago_id=pago_id).order_by(HistorialPago.id).all()
        return [f.to_dict() for f in filas]


class SqlArchivoRepository(_SqlTabla, ArchivoRepository):
    modelo = Archivo


class SqlNotificacionRepository(_SqlTabla, NotificacionRepository):
    modelo = Notificacion

    @_traducir_errores
    def delete(self, notificacion_id):
        obj = db.session.get(Notificacion, notificacion_id)
        if not obj:
            return False
        db.session.delete(obj)
        db.session.commit()
        return True

    @_traducir_errores
    def list_for(self, usuario_id):
        filas = Notificacion.query.filter_by(usuario_id=usuario_id).order_by(
            Notificacion.leida.asc(),  # No leídas primero
            Notificacion.id.desc(),
        ).all()
        return [n.to_dict() for n in filas]

    @_traducir_errores
    def delete_read(self, usuario_id):
        borradas = Notificacion.query.filter_by(usuario_id=usuario_id, leida=True).delete(synchronize_session='fetch')
        db.session.commit()
        return borradas

    @_traducir_errores
    def count_unread(self, usuario_id):
        return db.session.query(func.count(Notificacion.id)).filter(
            Notificacion.usuario_id == usuario_id,
            Notificacion.leida.is_(False),
        ).scalar() or 0


class SqlComunidadRepository(ComunidadRepository):
    MODELOS = {
        'anuncios': Anuncio,
        'solicitudes_mantenimiento': SolicitudMantenimiento,
        'espacios_comunes': EspacioComun,
    }

    def _modelo(self, tabla):
        try:
            return self.MODELOS[tabla]
        except KeyError:
            raise ValueError(f"Tabla de comunidad desconocida: {tabla}") from None

    @_traducir_errores
    def list(self, tabla, **filtros):
        modelo = self._modelo(tabla)
        query = modelo.query
        for campo, valor in filtros.items():
            if valor is not None:
                query = query.filter(getattr(modelo, campo) == valor)
        return [r.to_dict() for r in query.order_by(modelo.id.desc()).all()]

    @_traducir_errores
    def get(self, tabla, registro_id):
        obj = db.session.get(self._modelo(tabla), registro_id)
        return obj.to_dict() if obj else None

    @_traducir_errores
    def create(self, tabla, datos):
        modelo = self._modelo(tabla)
        obj = modelo(**_coercionar(modelo, datos))
        db.session.add(obj)
        db.session.commit()
        return obj.to_dict()

    @_traducir_errores
    def delete(self, tabla, registro_id):
        obj = db.session.get(self._modelo(tabla), registro_id)
        if not obj:
            return False
        db.session.delete(obj)
        db.session.commit()
        return True
