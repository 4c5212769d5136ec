# condoportal/services/pagos.py
"""
Flujos de pago: solicitud del residente con comprobante y validación del
administrador.

Ninguno de los dos usa el respaldo local: si la pasarela falla, el error
llega al usuario.
"""
import logging
from datetime import datetime, date
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..errors import (
    CondoPortalError, InvalidTransitionError, NotFoundError, OwnershipError, StorageError, ValidationError,
)
from ..gateway import get_gateway
from ..models import (
    PAGO_PENDIENTE, PAGO_APROBADO, PAGO_RECHAZADO, PAGO_PAGADO, ESTADOS_ADEUDADOS, TIPOS_PAGO, es_admin,
)
from ..utils.file_helpers import MAX_RECEIPT_BYTES, validate_receipt, encode_data_url, decode_data_url
from .autenticacion import require_admin
from .morosidad import local_date, recompute_resident_status
from .notificaciones import notify, notify_admins

logger = logging.getLogger(__name__)

DECISIONES = (PAGO_APROBADO, PAGO_RECHAZADO)
CENTIMOS = Decimal('0.01')
MONTO_MAXIMO = Decimal('99999999.99')  # Numeric(10, 2)


def parse_amount(amount):
    """Importe no negativo con dos decimales. Vacío o None se guarda como 0."""
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        return Decimal('0.00')
    try:
        monto = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"El monto '{amount}' no es un número válido.") from None
    if not monto.is_finite():
        raise ValidationError(f"El monto '{amount}' no es un número válido.")
    if monto < 0:
        raise ValidationError('El monto no puede ser negativo.')
    try:
        monto = monto.quantize(CENTIMOS)
    except InvalidOperation:
        raise ValidationError(f'El monto no puede superar {MONTO_MAXIMO}.') from None
    if monto > MONTO_MAXIMO:
        raise ValidationError(f'El monto no puede superar {MONTO_MAXIMO}.')
    return monto


def record_history(gw, pago_id, evento, usuario_actor_id, datos=None):
    """Añade un evento al historial del pago. Un fallo aquí no interrumpe el flujo."""
    try:
        return gw.historial.add(pago_id, evento, usuario_actor_id, datos)
    except CondoPortalError as e:
        logger.error(f"No se pudo registrar el evento '{evento}' del pago {pago_id}: {e}")
        return None


def _guardar_comprobante(gw, resident_id, recibo):
    try:
        return gw.archivos.create({
            'usuario_id': resident_id,
            'nombre_original': recibo.nombre,
            'tipo_mime': recibo.tipo_mime,
            'tamano_bytes': len(recibo.contenido),
            'url': encode_data_url(recibo.tipo_mime, recibo.contenido),
            'created_at': datetime.now(),
        })
    except CondoPortalError as e:
        logger.error(f"Fallo al guardar el comprobante del residente {resident_id}: {e}")
        raise StorageError(f"No se pudo guardar el comprobante: {e}") from e


def submit_payment(resident_id, residence_number, receipt_file, description, amount=None, reference=None,
                   tipo='mantenimiento', fecha_vencimiento=None, gateway=None):
    """
    Registra una solicitud de pago en estado pendiente.

    Args:
        resident_id (int): residente que paga.
        residence_number (str): número de vivienda tal como lo escribe el residente.
        receipt_file (FileStorage): comprobante (imagen o PDF, máx. 10 MB).
        description (str): nombre libre del pago; el concepto se forma con él y la fecha.
        amount: importe opcional; si falta se guarda 0 para corrección administrativa.
        reference (str): referencia bancaria opcional.

    Returns:
        dict: el pago creado

    Raises:
        ValidationError: comprobante ausente o inválido, descripción vacía o monto incorrecto.
        OwnershipError: la vivienda no está asociada al residente.
        StorageError: no se pudo guardar el comprobante (no se crea el pago).
    """
    gw = gateway or get_gateway()
    max_bytes = current_app.config.get('MAX_RECEIPT_BYTES', MAX_RECEIPT_BYTES)

    recibo = validate_receipt(receipt_file, max_bytes)
    descripcion = (description or '').strip()
    if not descripcion:
        raise ValidationError('La descripción del pago es obligatoria.')
    monto = parse_amount(amount)
    if tipo not in TIPOS_PAGO:
        raise ValidationError(f"Tipo de pago no válido: {tipo}")

    vivienda_id = gw.viviendas.resolve_for_resident(resident_id, residence_number)
    if vivienda_id is None:
        logger.warning(f"Residente {resident_id} intenta pagar por la vivienda '{residence_number}' sin estar asociado")
        raise OwnershipError(f"La vivienda '{(residence_number or '').strip()}' no está asociada a su usuario.")
    vivienda = gw.viviendas.get(vivienda_id) or {}

    archivo = _guardar_comprobante(gw, resident_id, recibo)

    ahora = datetime.now()
    referencia = (reference or '').strip() or None
    pago = gw.pagos.create({
        'usuario_id': resident_id,
        'vivienda_id': vivienda_id,
        'condominio_id': vivienda.get('condominio_id'),
        'concepto': f"{descripcion} - {ahora.strftime('%d/%m/%Y %H:%M')}",
        'monto': monto,
        'tipo': tipo,
        'estado': PAGO_PENDIENTE,
        'fecha_vencimiento': fecha_vencimiento,
        'comprobante_archivo_id': archivo['id'],
        'referencia': referencia,
        'observaciones': descripcion,
        'created_at': ahora,
    })
    logger.info(f"Pago {pago['id']} solicitado por el residente {resident_id} (vivienda {vivienda_id}, monto {monto})")

    try:
        gw.archivos.update(archivo['id'], entidad='pagos', entidad_id=pago['id'])
    except CondoPortalError as e:
        logger.warning(f"No se pudo enlazar el archivo {archivo['id']} con el pago {pago['id']}: {e}")

    record_history(gw, pago['id'], 'creado', resident_id, {'monto': float(monto), 'referencia': referencia})
    notify_admins(
        'nueva_solicitud_pago',
        f"Nueva solicitud de pago \"{pago['concepto']}\" de la vivienda {vivienda.get('numero_vivienda', vivienda_id)} "
        f"pendiente de validación.",
        relacion_entidad='pagos',
        relacion_id=pago['id'],
        gateway=gw,
    )
    return pago


def validate_payment(payment_id, admin_id, decision, reason=None, gateway=None, today=None):
    """
    Aprueba o rechaza un pago pendiente.

    El rol del administrador se comprueba aquí, releyendo el usuario. Tras la
    transición se recalcula al momento el estado del residente afectado.

    Raises:
        AuthorizationError: el usuario no es administrador.
        NotFoundError: el pago no existe.
        InvalidTransitionError: el pago ya no está pendiente.
        ValidationError: decisión desconocida.
    """
    gw = gateway or get_gateway()
    decision = (decision or '').strip().lower()
    if decision not in DECISIONES:
        raise ValidationError(f"Decisión no válida: '{decision}'. Use 'aprobado' o 'rechazado'.")
    require_admin(admin_id, gw)

    pago = gw.pagos.get(payment_id)
    if not pago:
        raise NotFoundError(f"No existe el pago {payment_id}.")
    if pago.get('estado') != PAGO_PENDIENTE:
        raise InvalidTransitionError(f"El pago ya fue procesado (estado: {pago.get('estado')}).")

    ahora = datetime.now()
    campos = {'estado': decision, 'validado_por': admin_id, 'fecha_validacion': ahora}
    motivo = (reason or '').strip() or None
    if decision == PAGO_RECHAZADO:
        campos['motivo_rechazo'] = motivo
    else:
        campos['fecha_pago'] = ahora
    actualizado = gw.pagos.update(payment_id, **campos)
    logger.info(f"Pago {payment_id} {decision} por el administrador {admin_id}")

    record_history(gw, payment_id, decision, admin_id, {'motivo': motivo} if motivo else None)

    if decision == PAGO_RECHAZADO:
        mensaje = f"Su pago \"{pago.get('concepto')}\" ha sido rechazado."
        if motivo:
            mensaje += f" Motivo: {motivo}"
        notify(pago['usuario_id'], 'pago_rechazado', mensaje, 'pagos', payment_id, gateway=gw)
    else:
        notify(pago['usuario_id'], 'pago_aprobado', f"Su pago \"{pago.get('concepto')}\" ha sido aprobado.",
               'pagos', payment_id, gateway=gw)

    try:
        recompute_resident_status(pago['usuario_id'], gw, today)
    except Exception as e:
        # La rutina programada corregirá el estado más tarde
        logger.error(f"No se pudo recalcular el estado del residente {pago['usuario_id']} tras validar el pago {payment_id}: {e}")
    return actualizado


def get_receipt(payment_id, gateway=None):
    """
    Datos visualizables del comprobante de un pago.

    Raises:
        NotFoundError: el pago o el archivo no existen.
        StorageError: el contenido guardado no es legible.
    """
    gw = gateway or get_gateway()
    pago = gw.pagos.get(payment_id)
    if not pago:
        raise NotFoundError(f"No existe el pago {payment_id}.")
    archivo_id = pago.get('comprobante_archivo_id')
    if not archivo_id:
        raise NotFoundError('El pago no tiene comprobante asociado.')
    archivo = gw.archivos.get(archivo_id)
    if not archivo:
        raise NotFoundError('El comprobante del pago no se encuentra.')
    url = archivo.get('url') or ''
    if not (url.startswith('data:') or url.startswith('http://') or url.startswith('https://')):
        raise StorageError(f"El comprobante {archivo_id} no tiene una URL legible.")
    return {
        'pago_id': payment_id,
        'usuario_id': pago.get('usuario_id'),
        'archivo_id': archivo_id,
        'nombre': archivo.get('nombre_original'),
        'tipo_mime': archivo.get('tipo_mime'),
        'url': url,
    }


def decode_receipt(receipt):
    """Bytes del comprobante para descarga."""
    _, contenido = decode_data_url(receipt['url'])
    return contenido


def list_payments(usuario_id=None, estado=None, gateway=None):
    gw = gateway or get_gateway()
    return gw.pagos.list(usuario_id=usuario_id, estados=(estado,) if estado else None)


def account_statement(usuario_id, gateway=None, today=None):
    """Resumen de cuenta: totales adeudados y pagados y lista de pagos vencidos."""
    gw = gateway or get_gateway()
    hoy = today or date.today()
    pagos = gw.pagos.list(usuario_id=usuario_id)
    total_pendiente = Decimal('0.00')
    total_pagado = Decimal('0.00')
    vencidos = []
    for pago in pagos:
        monto = Decimal(str(pago.get('monto') or 0))
        estado = pago.get('estado')
        if estado in ESTADOS_ADEUDADOS:
            total_pendiente += monto
            vencimiento = local_date(pago.get('fecha_vencimiento'))
            if vencimiento is not None and vencimiento < hoy:
                vencidos.append(pago)
        elif estado in (PAGO_APROBADO, PAGO_PAGADO):
            total_pagado += monto
    return {
        'usuario_id': usuario_id,
        'total_pendiente': float(total_pendiente),
        'total_pagado': float(total_pagado),
        'pagos_vencidos': vencidos,
        'pagos': pagos,
    }


def create_bulk_payments(admin_id, concepto, monto, fecha_vencimiento, usuario_ids=None, tipo='mantenimiento',
                         gateway=None):
    """
    Crea una obligación de pago pendiente para varios residentes.
    Sin `usuario_ids` se aplica a todos los residentes no administradores.
    """
    gw = gateway or get_gateway()
    require_admin(admin_id, gw)
    concepto = (concepto or '').strip()
    if not concepto:
        raise ValidationError('El concepto es obligatorio.')
    importe = parse_amount(monto)
    if tipo not in TIPOS_PAGO:
        raise ValidationError(f"Tipo de pago no válido: {tipo}")

    if usuario_ids is None:
        destinatarios = [u for u in gw.usuarios.list_all() if u.get('rol') and not es_admin(u.get('rol'))]
    else:
        destinatarios = []
        for usuario_id in usuario_ids:
            usuario = gw.usuarios.get(usuario_id)
            if not usuario:
                raise NotFoundError(f"No existe el usuario {usuario_id}.")
            destinatarios.append(usuario)

    creados = []
    for usuario in destinatarios:
        viviendas = gw.viviendas.list_for_resident(usuario['id'])
        vivienda = viviendas[0] if viviendas else {}
        pago = gw.pagos.create({
            'usuario_id': usuario['id'],
            'vivienda_id': vivienda.get('id'),
            'condominio_id': vivienda.get('condominio_id') or usuario.get('condominio_id'),
            'concepto': concepto,
            'monto': importe,
            'tipo': tipo,
            'estado': PAGO_PENDIENTE,
            'fecha_vencimiento': fecha_vencimiento,
            'created_at': datetime.now(),
        })
        record_history(gw, pago['id'], 'creado', admin_id, {'masivo': True})
        vence = local_date(fecha_vencimiento)
        notify(usuario['id'], 'pago_creado',
               f"Se ha registrado el pago \"{concepto}\" por {importe}"
               + (f" con vencimiento el {vence.strftime('%d/%m/%Y')}." if vence else "."),
               'pagos', pago['id'], gateway=gw)
        creados.append(pago)
    logger.info(f"Administrador {admin_id} creó {len(creados)} pagos masivos '{concepto}'")
    return creados
