# condoportal/routes/auth.py
from flask import Blueprint, jsonify, request, url_for, current_app
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf

from ..forms import LoginForm, RegistroForm, RecuperacionForm
from ..services.autenticacion import (
    authenticate, register_resident, get_security_questions, reset_password_with_security_questions,
    set_security_questions,
)
from ..services.notificaciones import release_bell
from ..utils.resident_session import SessionContext, CurrentResident

auth_bp = Blueprint('auth_bp', __name__)


def _errores_formulario(form):
    return jsonify({'error': 'validacion', 'mensaje': 'Revise los datos del formulario.', 'errores': form.errors}), 400


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET':
        return jsonify({
            'autenticado': current_user.is_authenticated,
            'csrf_token': generate_csrf(),
        })

    form = LoginForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)

    usuario = authenticate(form.correo.data, form.password.data)
    if not usuario:
        return jsonify({'error': 'credenciales', 'mensaje': 'Correo o contraseña incorrectos.'}), 401

    ctx = SessionContext.current()
    snapshot = ctx.start(usuario)
    login_user(CurrentResident(snapshot), remember=form.remember_me.data)
    current_app.logger.info(f"Usuario {usuario['id']} inició sesión.")

    destino = url_for('pagos_bp.bloqueo') if ctx.is_moroso else url_for('main_bp.index')
    return jsonify({'mensaje': 'Inicio de sesión exitoso.', 'usuario': usuario, 'redirect_url': destino})


@auth_bp.route('/logout', methods=['GET', 'POST'])
@login_required
def logout():
    usuario_id = current_user.id
    release_bell(usuario_id)
    logout_user()
    SessionContext.current().clear()
    current_app.logger.info(f"Usuario {usuario_id} cerró sesión.")
    return jsonify({'mensaje': 'Has cerrado sesión.', 'redirect_url': url_for('auth_bp.login')})


@auth_bp.route('/registro', methods=['POST'])
def registro():
    form = RegistroForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)

    datos = request.get_json(silent=True) or {}
    usuario = register_resident(
        nombre=form.nombre.data,
        correo=form.correo.data,
        password=form.password.data,
        numero_vivienda=form.numero_vivienda.data,
        condominio_id=form.condominio_id.data,
        telefono=form.telefono.data,
        rol_solicitado=form.rol_solicitado.data,
        preguntas=datos.get('preguntas_seguridad'),
    )
    return jsonify({
        'mensaje': 'Solicitud de registro enviada. Podrá iniciar sesión cuando la administración la apruebe.',
        'usuario': usuario,
        'pendiente': True,
    }), 201


@auth_bp.route('/preguntas', methods=['GET'])
def preguntas():
    correo = request.args.get('correo', '')
    return jsonify({'correo': correo, 'preguntas': get_security_questions(correo)})


@auth_bp.route('/preguntas', methods=['POST'])
@login_required
def cambiar_preguntas():
    """Reemplaza las preguntas de seguridad del usuario en sesión."""
    datos = request.get_json(silent=True) or {}
    guardadas = set_security_questions(current_user.id, datos.get('preguntas_seguridad'))
    current_app.logger.info(f"Usuario {current_user.id} actualizó sus preguntas de seguridad.")
    return jsonify({'mensaje': 'Preguntas de seguridad actualizadas.', 'preguntas': guardadas})


@auth_bp.route('/recuperar', methods=['POST'])
def recuperar():
    form = RecuperacionForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)

    if request.is_json:
        respuestas = (request.get_json(silent=True) or {}).get('respuestas') or []
    else:
        respuestas = request.form.getlist('respuestas')
    reset_password_with_security_questions(form.correo.data, respuestas, form.nueva_password.data)
    return jsonify({'mensaje': 'Contraseña actualizada. Ya puede iniciar sesión.', 'redirect_url': url_for('auth_bp.login')})


@auth_bp.route('/yo', methods=['GET'])
@login_required
def yo():
    ctx = SessionContext.current()
    return jsonify({'usuario': current_user.to_dict(), 'moroso': ctx.is_moroso})
