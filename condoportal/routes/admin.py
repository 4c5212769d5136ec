# condoportal/routes/admin.py
from flask import Blueprint, jsonify, request, current_app
from markupsafe import escape
from flask_login import login_required, current_user

from ..decorators import role_required
from ..forms import ValidacionPagoForm, PagoMasivoForm, AprobacionUsuarioForm, RechazoUsuarioForm
from ..services.autenticacion import list_pending_users, approve_user, reject_user
from ..services.morosidad import trigger_recompute
from ..services.pagos import list_payments, validate_payment, create_bulk_payments
from ..tasks import send_email

admin_bp = Blueprint('admin_bp', __name__)


def _errores_formulario(form):
    return jsonify({'error': 'validacion', 'mensaje': 'Revise los datos del formulario.', 'errores': form.errors}), 400


@admin_bp.route('/pagos/pendientes')
@login_required
@role_required('admin')
def pagos_pendientes():
    return jsonify({'pagos': list_payments(estado='pendiente')})


@admin_bp.route('/pagos/<int:id>/validar', methods=['POST'])
@login_required
@role_required('admin')
def validar_pago(id):
    form = ValidacionPagoForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    pago = validate_payment(id, current_user.id, form.decision.data, form.motivo.data)
    mensaje = 'Pago aprobado exitosamente.' if pago['estado'] == 'aprobado' else 'Pago rechazado.'
    return jsonify({'mensaje': mensaje, 'pago': pago})


@admin_bp.route('/pagos/masivos', methods=['POST'])
@login_required
@role_required('admin')
def pagos_masivos():
    form = PagoMasivoForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    usuario_ids = (request.get_json(silent=True) or {}).get('usuario_ids') if request.is_json else None
    creados = create_bulk_payments(
        current_user.id,
        form.concepto.data,
        form.monto.data,
        form.fecha_vencimiento.data,
        usuario_ids=usuario_ids,
        tipo=form.tipo.data,
    )
    return jsonify({'mensaje': f'Se crearon {len(creados)} pagos.', 'pagos': creados}), 201


@admin_bp.route('/mantenimiento/estados', methods=['POST'])
@login_required
@role_required('admin')
def recalcular_estados():
    """Dispara el recálculo de morosidad y devuelve el resumen para la tabla de resultados."""
    current_app.logger.info(f"Recalculo de morosidad lanzado manualmente por el administrador {current_user.id}")
    resumen = trigger_recompute(current_user.id)
    return jsonify(resumen)


# --- Aprobación de registros ---
@admin_bp.route('/usuarios/pendientes')
@login_required
@role_required('admin')
def usuarios_pendientes():
    return jsonify({'usuarios': list_pending_users(current_user.id)})


@admin_bp.route('/usuarios/<int:id>/aprobar', methods=['POST'])
@login_required
@role_required('admin')
def aprobar_usuario(id):
    form = AprobacionUsuarioForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    usuario = approve_user(id, form.rol.data or None, current_user.id)
    return jsonify({'mensaje': f"Usuario {usuario['nombre']} aprobado como {usuario['rol']}.", 'usuario': usuario})


@admin_bp.route('/usuarios/<int:id>/rechazar', methods=['POST'])
@login_required
@role_required('admin')
def rechazar_usuario(id):
    form = RechazoUsuarioForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    resultado = reject_user(id, form.motivo.data, current_user.id)
    if current_app.config.get('MAIL_NOTIFICATIONS_ENABLED'):
        resultado['email_enviado'] = send_email(
            resultado['correo'], 'Solicitud de registro rechazada', f"<p>{escape(resultado['mensaje'])}</p>")
    return jsonify(resultado)
