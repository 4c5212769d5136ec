# condoportal/forms.py
from flask_wtf import FlaskForm
from flask_wtf.file import FileField
from wtforms import StringField, PasswordField, BooleanField, SelectField, TextAreaField, IntegerField, DecimalField, DateField
from wtforms.validators import DataRequired, Length, Email, EqualTo, Optional, NumberRange

from .models import ROLES, ROLES_SOLICITABLES, TIPOS_PAGO


# --- FORMULARIO DE LOGIN ---
class LoginForm(FlaskForm):
    correo = StringField('Correo', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Contraseña', validators=[DataRequired()])
    remember_me = BooleanField('Recordarme')


# --- REGISTRO DE RESIDENTE ---
class RegistroForm(FlaskForm):
    nombre = StringField('Nombre completo', validators=[DataRequired(), Length(min=2, max=120)])
    correo = StringField('Correo', validators=[DataRequired(), Email(), Length(max=120)])
    password = PasswordField('Contraseña', validators=[DataRequired(), Length(min=8, message='La contraseña debe tener al menos 8 caracteres.')])
    confirm_password = PasswordField('Confirmar Contraseña', validators=[DataRequired(), EqualTo('password', message='Las contraseñas deben coincidir.')])
    numero_vivienda = StringField('Número de vivienda', validators=[Optional(), Length(max=30)])
    condominio_id = IntegerField('Condominio', validators=[Optional()])
    telefono = StringField('Teléfono', validators=[Optional(), Length(max=30)])
    rol_solicitado = SelectField('Rol solicitado', choices=[(r, r.capitalize()) for r in ROLES_SOLICITABLES], default='residente')


# --- RECUPERACIÓN POR PREGUNTAS DE SEGURIDAD ---
# Las respuestas llegan como lista ('respuestas') y se leen aparte
class RecuperacionForm(FlaskForm):
    correo = StringField('Correo', validators=[DataRequired(), Email(), Length(max=120)])
    nueva_password = PasswordField('Nueva contraseña', validators=[DataRequired(), Length(min=8, message='La contraseña debe tener al menos 8 caracteres.')])
    confirm_password = PasswordField('Confirmar Contraseña', validators=[DataRequired(), EqualTo('nueva_password', message='Las contraseñas deben coincidir.')])


# --- SOLICITUD DE PAGO ---
# Sin validadores obligatorios: el servicio de pagos devuelve los mensajes de error
class SolicitudPagoForm(FlaskForm):
    numero_vivienda = StringField('Número de vivienda', validators=[Optional(), Length(max=30)])
    descripcion = StringField('Descripción', validators=[Optional(), Length(max=200)])
    monto = StringField('Monto', validators=[Optional()])
    referencia = StringField('Referencia', validators=[Optional(), Length(max=100)])
    comprobante = FileField('Comprobante')


class ValidacionPagoForm(FlaskForm):
    decision = SelectField('Decisión', choices=[('aprobado', 'Aprobar'), ('rechazado', 'Rechazar')], validators=[DataRequired()])
    motivo = TextAreaField('Motivo', validators=[Optional(), Length(max=500)])


class PagoMasivoForm(FlaskForm):
    concepto = StringField('Concepto', validators=[DataRequired(), Length(max=200)])
    monto = DecimalField('Monto', places=2, validators=[DataRequired(), NumberRange(min=0)])
    fecha_vencimiento = DateField('Fecha de vencimiento', validators=[DataRequired()])
    tipo = SelectField('Tipo', choices=[(t, t.capitalize()) for t in TIPOS_PAGO], default='mantenimiento')


# --- APROBACIÓN DE REGISTROS ---
class AprobacionUsuarioForm(FlaskForm):
    rol = SelectField('Rol', choices=[('', 'Rol solicitado')] + [(r, r.capitalize()) for r in ROLES], default='', validators=[Optional()])


class RechazoUsuarioForm(FlaskForm):
    motivo = TextAreaField('Motivo', validators=[Optional(), Length(max=500)])


# --- COMUNIDAD ---
class AnuncioForm(FlaskForm):
    titulo = StringField('Título', validators=[DataRequired(), Length(max=200)])
    contenido = TextAreaField('Contenido', validators=[DataRequired()])
    categoria = StringField('Categoría', validators=[Optional(), Length(max=50)])


class SolicitudMantenimientoForm(FlaskForm):
    titulo = StringField('Título', validators=[DataRequired(), Length(max=200)])
    descripcion = TextAreaField('Descripción', validators=[DataRequired()])
    prioridad = SelectField('Prioridad', choices=[('baja', 'Baja'), ('media', 'Media'), ('alta', 'Alta'), ('urgente', 'Urgente')], default='media')


class EspacioComunForm(FlaskForm):
    nombre = StringField('Nombre', validators=[DataRequired(), Length(max=150)])
    descripcion = TextAreaField('Descripción', validators=[Optional()])
    capacidad = IntegerField('Capacidad', validators=[Optional(), NumberRange(min=0)])
