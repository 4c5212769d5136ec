# condoportal/models.py
from datetime import datetime, date
from decimal import Decimal

from sqlalchemy import Numeric, UniqueConstraint
from . import db

# --- CONSTANTES ---
ESTADO_ACTIVO = 'Activo'
ESTADO_MOROSO = 'Moroso'
ESTADOS_USUARIO = (ESTADO_ACTIVO, ESTADO_MOROSO)

ROLES = ('admin', 'propietario', 'residente', 'conserje', 'invitado')
ROLES_ADMIN = ('admin', 'administrador')  # 'Administrador' es la etiqueta heredada
ROLES_SOLICITABLES = ('propietario', 'residente', 'conserje', 'invitado')

PAGO_PENDIENTE = 'pendiente'
PAGO_APROBADO = 'aprobado'
PAGO_RECHAZADO = 'rechazado'
PAGO_VENCIDO = 'vencido'
PAGO_PAGADO = 'pagado'
ESTADOS_PAGO = (PAGO_PENDIENTE, PAGO_APROBADO, PAGO_RECHAZADO, PAGO_VENCIDO, PAGO_PAGADO)
ESTADOS_ADEUDADOS = (PAGO_PENDIENTE, PAGO_VENCIDO)
TIPOS_PAGO = ('mantenimiento', 'multa', 'reserva', 'otros')


def es_admin(rol):
    return (rol or '').strip().lower() in ROLES_ADMIN


class SerializableMixin:
    """Convierte la fila en un dict con valores aptos para JSON."""

    def to_dict(self):
        datos = {}
        for columna in self.__table__.columns:
            valor = getattr(self, columna.key)
            if isinstance(valor, (datetime, date)):
                valor = valor.isoformat()
            elif isinstance(valor, Decimal):
                valor = float(valor)
            datos[columna.key] = valor
        return datos


class Usuario(SerializableMixin, db.Model):
    __tablename__ = 'usuarios'
    id = db.Column(db.Integer, primary_key=True)
    nombre = db.Column(db.String(120), nullable=False)
    correo = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=True)
    rol = db.Column(db.String(30), nullable=True)  # None mientras el registro está pendiente
    rol_solicitado = db.Column(db.String(30), nullable=True)
    estado = db.Column(db.String(20), nullable=True, default=ESTADO_ACTIVO)
    telefono = db.Column(db.String(30), nullable=True)
    condominio_id = db.Column(db.Integer, db.ForeignKey('condominios.id', ondelete='SET NULL'), nullable=True)
    # Lista ordenada de {'pregunta', 'respuesta_hash'}
    preguntas_seguridad = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f'<Usuario {self.id}: {self.correo} [{self.rol}] {self.estado}>'


class Condominio(SerializableMixin, db.Model):
    __tablename__ = 'condominios'
    id = db.Column(db.Integer, primary_key=True)
    nombre = db.Column(db.String(150), nullable=False)
    direccion = db.Column(db.String(255), nullable=True)
    ciudad = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f'<Condominio {self.id}: {self.nombre}>'


class Vivienda(SerializableMixin, db.Model):
    __tablename__ = 'viviendas'
    id = db.Column(db.Integer, primary_key=True)
    condominio_id = db.Column(db.Integer, db.ForeignKey('condominios.id', ondelete='CASCADE'), nullable=True)
    numero_vivienda = db.Column(db.String(30), nullable=False)
    tipo = db.Column(db.String(30), nullable=True)
    activo = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f'<Vivienda {self.id}: {self.numero_vivienda}>'


class UsuarioVivienda(SerializableMixin, db.Model):
    __tablename__ = 'usuario_vivienda'
    __table_args__ = (UniqueConstraint('usuario_id', 'vivienda_id', name='uq_usuario_vivienda'),)
    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), nullable=False, index=True)
    vivienda_id = db.Column(db.Integer, db.ForeignKey('viviendas.id', ondelete='CASCADE'), nullable=False, index=True)
    tipo_relacion = db.Column(db.String(30), nullable=False, default='residente')
    activo = db.Column(db.Boolean, default=True, nullable=False)
    fecha_inicio = db.Column(db.Date, default=date.today)


class Pago(SerializableMixin, db.Model):
    __tablename__ = 'pagos'
    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), nullable=False, index=True)
    vivienda_id = db.Column(db.Integer, db.ForeignKey('viviendas.id', ondelete='SET NULL'), nullable=True)
    condominio_id = db.Column(db.Integer, db.ForeignKey('condominios.id', ondelete='SET NULL'), nullable=True)
    concepto = db.Column(db.String(255), nullable=False)
    monto = db.Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tipo = db.Column(db.String(30), nullable=False, default='mantenimiento')
    estado = db.Column(db.String(20), nullable=False, default=PAGO_PENDIENTE, index=True)
    fecha_vencimiento = db.Column(db.Date, nullable=True)
    fecha_pago = db.Column(db.DateTime, nullable=True)
    comprobante_archivo_id = db.Column(db.Integer, db.ForeignKey('archivos.id', ondelete='SET NULL'), nullable=True)
    referencia = db.Column(db.String(100), nullable=True)
    observaciones = db.Column(db.Text, nullable=True)
    motivo_rechazo = db.Column(db.Text, nullable=True)
    validado_por = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='SET NULL'), nullable=True)
    fecha_validacion = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    def __repr__(self):
        return f'<Pago {self.id}: {self.concepto} [{self.estado}]>'


class HistorialPago(SerializableMixin, db.Model):
    __tablename__ = 'historial_pagos'
    id = db.Column(db.Integer, primary_key=True)
    pago_id = db.Column(db.Integer, db.ForeignKey('pagos.id', ondelete='CASCADE'), nullable=False, index=True)
    evento = db.Column(db.String(30), nullable=False)  # 'creado', 'aprobado', 'rechazado'
    usuario_actor_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='SET NULL'), nullable=True)
    datos = db.Column(db.JSON, nullable=True)
    fecha_evento = db.Column(db.DateTime, default=datetime.now)


class Archivo(SerializableMixin, db.Model):
    __tablename__ = 'archivos'
    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), nullable=True)
    entidad = db.Column(db.String(50), nullable=True)
    entidad_id = db.Column(db.Integer, nullable=True)
    nombre_original = db.Column(db.String(255), nullable=False)
    tipo_mime = db.Column(db.String(100), nullable=False)
    tamano_bytes = db.Column(db.Integer, nullable=True)
    url = db.Column(db.Text, nullable=False)  # data URL en base64
    created_at = db.Column(db.DateTime, default=datetime.now)


class Notificacion(SerializableMixin, db.Model):
    __tablename__ = 'notificaciones'
    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), nullable=False, index=True)
    tipo = db.Column(db.String(50), nullable=False)
    titulo = db.Column(db.String(150), nullable=False)
    mensaje = db.Column(db.Text, nullable=False)
    leida = db.Column(db.Boolean, default=False, nullable=False, index=True)
    accion_requerida = db.Column(db.Boolean, default=False, nullable=False)
    relacion_entidad = db.Column(db.String(50), nullable=True)
    relacion_id = db.Column(db.Integer, nullable=True)
    fecha_creacion = db.Column(db.DateTime, default=datetime.now, index=True)
    fecha_lectura = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<Notificacion {self.id} [{self.tipo}] Leída: {self.leida}>'


class Anuncio(SerializableMixin, db.Model):
    __tablename__ = 'anuncios'
    id = db.Column(db.Integer, primary_key=True)
    condominio_id = db.Column(db.Integer, db.ForeignKey('condominios.id', ondelete='CASCADE'), nullable=True)
    autor_usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='SET NULL'), nullable=True)
    titulo = db.Column(db.String(200), nullable=False)
    contenido = db.Column(db.Text, nullable=False)
    categoria = db.Column(db.String(50), nullable=True)
    activo = db.Column(db.Boolean, default=True, nullable=False)
    fecha_publicacion = db.Column(db.DateTime, default=datetime.now)


class SolicitudMantenimiento(SerializableMixin, db.Model):
    __tablename__ = 'solicitudes_mantenimiento'
    id = db.Column(db.Integer, primary_key=True)
    usuario_id = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='CASCADE'), nullable=False)
    vivienda_id = db.Column(db.Integer, db.ForeignKey('viviendas.id', ondelete='SET NULL'), nullable=True)
    titulo = db.Column(db.String(200), nullable=False)
    descripcion = db.Column(db.Text, nullable=False)
    prioridad = db.Column(db.String(20), nullable=False, default='media')
    estado = db.Column(db.String(20), nullable=False, default='pendiente')
    fecha_solicitud = db.Column(db.DateTime, default=datetime.now)


class EspacioComun(SerializableMixin, db.Model):
    __tablename__ = 'espacios_comunes'
    id = db.Column(db.Integer, primary_key=True)
    condominio_id = db.Column(db.Integer, db.ForeignKey('condominios.id', ondelete='CASCADE'), nullable=True)
    nombre = db.Column(db.String(150), nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    capacidad = db.Column(db.Integer, nullable=True)
    creado_por = db.Column(db.Integer, db.ForeignKey('usuarios.id', ondelete='SET NULL'), nullable=True)
    activo = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
