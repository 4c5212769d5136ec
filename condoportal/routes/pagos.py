# condoportal/routes/pagos.py
import io

from flask import Blueprint, jsonify, send_file, current_app, url_for
from flask_login import login_required, current_user

from ..errors import AuthorizationError
from ..forms import SolicitudPagoForm
from ..gateway import get_gateway
from ..services.pagos import submit_payment, list_payments, account_statement, get_receipt, decode_receipt
from ..utils.file_helpers import MAX_RECEIPT_BYTES, ALLOWED_RECEIPT_TYPES

pagos_bp = Blueprint('pagos_bp', __name__)


@pagos_bp.route('/solicitar', methods=['GET', 'POST'])
@login_required
def solicitar_pago():
    """Pantalla de envío de pagos: la única accesible para un residente moroso."""
    gw = get_gateway()
    form = SolicitudPagoForm()
    if not form.is_submitted():
        return jsonify({
            'viviendas': [v['numero_vivienda'] for v in gw.viviendas.list_for_resident(current_user.id)],
            'max_bytes': current_app.config.get('MAX_RECEIPT_BYTES', MAX_RECEIPT_BYTES),
            'tipos_permitidos': sorted(ALLOWED_RECEIPT_TYPES),
            'estado_cuenta': account_statement(current_user.id, gw),
        })

    if not form.validate():
        return jsonify({'error': 'validacion', 'mensaje': 'Revise los datos del formulario.', 'errores': form.errors}), 400

    pago = submit_payment(
        current_user.id,
        form.numero_vivienda.data,
        form.comprobante.data,
        form.descripcion.data,
        amount=form.monto.data,
        reference=form.referencia.data,
        gateway=gw,
    )
    return jsonify({
        'mensaje': 'Solicitud de pago enviada. Será revisada por la administración.',
        'pago': pago,
    }), 201


@pagos_bp.route('/mis-pagos')
@login_required
def mis_pagos():
    return jsonify({'pagos': list_payments(usuario_id=current_user.id)})


@pagos_bp.route('/bloqueo')
@login_required
def bloqueo():
    """Pantalla de bloqueo del residente moroso con sus pagos vencidos."""
    estado = account_statement(current_user.id)
    return jsonify({
        'mensaje': 'Su cuenta tiene pagos vencidos. Solo puede acceder a la sección de pagos hasta regularizar su situación.',
        'estado': current_user.estado,
        'pagos_vencidos': estado['pagos_vencidos'],
        'total_pendiente': estado['total_pendiente'],
        'solicitar_pago_url': url_for('pagos_bp.solicitar_pago'),
    })


def _comprobante_visible(pago_id):
    comprobante = get_receipt(pago_id)
    if comprobante['usuario_id'] != current_user.id and not current_user.is_admin:
        raise AuthorizationError('No tiene permiso para ver este comprobante.')
    return comprobante


@pagos_bp.route('/<int:id>/comprobante')
@login_required
def ver_comprobante(id):
    return jsonify(_comprobante_visible(id))


@pagos_bp.route('/<int:id>/comprobante/descargar')
@login_required
def descargar_comprobante(id):
    comprobante = _comprobante_visible(id)
    contenido = decode_receipt(comprobante)
    return send_file(
        io.BytesIO(contenido),
        mimetype=comprobante['tipo_mime'],
        as_attachment=True,
        download_name=comprobante['nombre'] or f"comprobante_{id}",
    )
