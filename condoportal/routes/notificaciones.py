# condoportal/routes/notificaciones.py
from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from ..services.notificaciones import (
    list_notifications, unread_count, mark_read, delete_notification, delete_read_notifications, get_bell,
)

notificaciones_bp = Blueprint('notificaciones_bp', __name__)


@notificaciones_bp.route('/')
@login_required
def listar():
    """Notificaciones del usuario actual: no leídas primero, luego las más recientes."""
    return jsonify({
        'notificaciones': list_notifications(current_user.id),
        'no_leidas': unread_count(current_user.id),
    })


@notificaciones_bp.route('/campana')
@login_required
def campana():
    """Consulta periódica de la campana. `?forzar=1` ignora el intervalo de sondeo."""
    bell = get_bell(current_user.to_dict())
    bell.poll(force=request.args.get('forzar') == '1')
    return jsonify({
        'no_leidas': unread_count(current_user.id),
        'alertas': bell.drain(),
        'intervalo_ms': int(bell.poll_interval * 1000),
    })


@notificaciones_bp.route('/<int:id>/leer', methods=['POST'])
@login_required
def marcar_leida(id):
    notificacion = mark_read(id, current_user.id)
    current_app.logger.info(f"Notificación {id} marcada como leída por el usuario {current_user.id}.")
    return jsonify({'notificacion': notificacion})


@notificaciones_bp.route('/<int:id>/eliminar', methods=['POST'])
@login_required
def eliminar(id):
    delete_notification(id, current_user.id)
    return jsonify({'mensaje': 'Notificación eliminada.'})


@notificaciones_bp.route('/eliminar-leidas', methods=['POST'])
@login_required
def eliminar_leidas():
    borradas = delete_read_notifications(current_user.id)
    if borradas > 0:
        mensaje = f"Se eliminaron {borradas} notificaciones leídas."
    else:
        mensaje = "No había notificaciones leídas para eliminar."
    return jsonify({'mensaje': mensaje, 'eliminadas': borradas})
