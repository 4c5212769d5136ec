# condoportal/errors.py
"""
Jerarquía de errores del portal y su traducción a respuestas JSON.

Los errores de validación, propiedad y autorización se muestran al usuario tal
cual. Los de almacenamiento y de backend transitorio se envuelven con un
mensaje genérico que sugiere reintentar.
"""
from flask import jsonify
from werkzeug.exceptions import HTTPException


class CondoPortalError(Exception):
    """Error base de la aplicación."""
    status_code = 500
    code = 'error'
    expose_message = False
    generic_message = 'Ha ocurrido un error inesperado. Inténtelo de nuevo.'

    def __init__(self, message=None):
        super().__init__(message or self.generic_message)

    @property
    def user_message(self):
        if self.expose_message:
            return str(self)
        return self.generic_message

    def to_dict(self):
        return {'error': self.code, 'mensaje': self.user_message}


class ValidationError(CondoPortalError):
    status_code = 400
    code = 'validacion'
    expose_message = True


class InvalidTransitionError(ValidationError):
    """El pago ya no está en un estado que admita la transición pedida."""
    status_code = 409
    code = 'transicion_invalida'


class OwnershipError(CondoPortalError):
    status_code = 403
    code = 'vivienda_no_asociada'
    expose_message = True
    generic_message = 'La vivienda indicada no está asociada a su usuario.'


class AuthorizationError(CondoPortalError):
    status_code = 403
    code = 'no_autorizado'
    expose_message = True
    generic_message = 'No tiene permisos para realizar esta acción.'


class NotFoundError(CondoPortalError):
    status_code = 404
    code = 'no_encontrado'
    expose_message = True
    generic_message = 'El recurso solicitado no existe.'


class StorageError(CondoPortalError):
    status_code = 502
    code = 'almacenamiento'
    generic_message = 'No se pudo guardar el comprobante. Inténtelo de nuevo en unos minutos.'


class TransientBackendError(CondoPortalError):
    status_code = 503
    code = 'servicio_no_disponible'
    generic_message = 'El servicio de datos no está disponible en este momento. Inténtelo de nuevo más tarde.'


HTTP_MESSAGES = {
    400: 'Solicitud incorrecta.',
    401: 'Debe iniciar sesión para continuar.',
    403: 'No tiene permisos para acceder a este recurso.',
    404: 'Recurso no encontrado.',
    405: 'Método no permitido.',
    413: 'El archivo supera el tamaño máximo permitido.',
}


def register_error_handlers(app):
    """Registra los manejadores de error JSON en la aplicación."""

    @app.errorhandler(CondoPortalError)
    def handle_portal_error(error):
        if error.expose_message:
            app.logger.info(f"{error.__class__.__name__}: {error}")
        else:
            app.logger.error(f"{error.__class__.__name__}: {error}", exc_info=True)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        mensaje = HTTP_MESSAGES.get(error.code, error.description)
        return jsonify({'error': error.name.lower().replace(' ', '_'), 'mensaje': mensaje}), error.code

    @app.errorhandler(500)
    def handle_internal_error(error):
        app.logger.error(f"Error interno del servidor: {error}", exc_info=True)
        return jsonify({'error': 'error_interno', 'mensaje': CondoPortalError.generic_message}), 500
