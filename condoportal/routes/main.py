# condoportal/routes/main.py
from flask import Blueprint, jsonify, redirect, request, url_for, current_app
from flask_login import current_user

from ..decorators import is_ajax_request
from ..gateway import get_gateway
from ..utils.resident_session import SessionContext

main_bp = Blueprint('main_bp', __name__)

# Único recorrido permitido a un residente moroso
ENDPOINTS_PERMITIDOS_MOROSO = {
    'pagos_bp.solicitar_pago',
    'pagos_bp.bloqueo',
    'auth_bp.logout',
    'auth_bp.yo',
    'static',
}


@main_bp.before_app_request
def session_gate():
    """
    Reconcilia el estado del residente con la pasarela y, si es Moroso,
    bloquea todo salvo la pantalla de pagos.
    """
    if request.endpoint is None or request.endpoint == 'static':
        return None
    if not current_user.is_authenticated:
        return None

    ctx = SessionContext.current()
    if not ctx.is_authenticated:
        # Sesión recuperada por cookie "recordarme": reconstruir la copia
        ctx.start(current_user.to_dict())
        ctx.reconcile(get_gateway(), force=True)
    else:
        ctx.reconcile(get_gateway())
    current_user.refresh(ctx.snapshot)

    if not ctx.is_moroso or request.endpoint in ENDPOINTS_PERMITIDOS_MOROSO:
        return None

    current_app.logger.info(f"Residente moroso {current_user.id} bloqueado en '{request.endpoint}'")
    if is_ajax_request():
        return jsonify({
            'error': 'cuenta_morosa',
            'mensaje': 'Su cuenta tiene pagos vencidos. Solo puede acceder a la sección de pagos.',
            'redirect_url': url_for('pagos_bp.bloqueo'),
        }), 403
    return redirect(url_for('pagos_bp.bloqueo'))


@main_bp.route('/')
def index():
    usuario = current_user.to_dict() if current_user.is_authenticated else None
    return jsonify({
        'aplicacion': 'CondoPortal',
        'usuario': usuario,
        'login_url': url_for('auth_bp.login'),
    })
