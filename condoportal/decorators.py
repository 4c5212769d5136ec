# condoportal/decorators.py
from functools import wraps
from flask import jsonify, redirect, request, url_for, current_app
from flask_login import current_user

from .models import es_admin


def is_ajax_request():
    return (
        request.is_json or
        request.headers.get('X-Requested-With') == 'XMLHttpRequest' or
        'application/json' in request.headers.get('Accept', '')
    )


def _rol_normalizado(rol):
    if es_admin(rol):
        return 'admin'
    return (rol or '').strip().lower()


def role_required(*roles):
    """Decorador para requerir uno o más roles. 'Administrador' cuenta como 'admin'."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                if is_ajax_request():
                    return jsonify({
                        'error': 'no_autenticado',
                        'mensaje': 'Debe iniciar sesión para continuar.',
                        'redirect_url': url_for('auth_bp.login'),
                    }), 401
                return redirect(url_for('auth_bp.login', next=request.url))

            # Manejar tanto listas como argumentos separados
            allowed_roles = roles[0] if len(roles) == 1 and isinstance(roles[0], (list, tuple)) else roles

            if _rol_normalizado(current_user.rol) not in allowed_roles:
                current_app.logger.warning(
                    f"Acceso denegado a {current_user.correo}. Rol requerido: {allowed_roles}, Rol actual: {current_user.rol}"
                )
                return jsonify({
                    'error': 'no_autorizado',
                    'mensaje': 'No tiene permisos para acceder a esta sección.',
                }), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
