# condoportal/services/morosidad.py
"""
Recalculo del estado Activo/Moroso de los residentes.

El estado guardado en `usuarios.estado` es solo una proyección: un residente
es Moroso si y solo si tiene al menos un pago pendiente o vencido cuya fecha
de vencimiento (fecha local) es anterior a hoy. Un pago que vence hoy no
cuenta. Los administradores quedan fuera del cálculo.
"""
import logging
from datetime import datetime, date

from ..errors import NotFoundError
from ..events import status_events
from ..gateway import get_gateway
from ..models import ESTADO_ACTIVO, ESTADO_MOROSO, ESTADOS_ADEUDADOS, es_admin

logger = logging.getLogger(__name__)


def local_date(valor):
    """
    Fecha de calendario local de un valor date, datetime o cadena ISO.
    Los datetime con zona horaria se pasan a la hora local antes de truncar.
    """
    if valor is None or valor == '':
        return None
    if isinstance(valor, str):
        valor = datetime.fromisoformat(valor.strip().replace('Z', '+00:00'))
    if isinstance(valor, datetime):
        if valor.tzinfo is not None:
            valor = valor.astimezone()
        return valor.date()
    if isinstance(valor, date):
        return valor
    raise TypeError(f"Fecha no reconocida: {valor!r}")


def tiene_obligacion_vencida(pagos, hoy):
    for pago in pagos:
        if (pago.get('estado') or '').lower() not in ESTADOS_ADEUDADOS:
            continue
        vencimiento = local_date(pago.get('fecha_vencimiento'))
        if vencimiento is not None and vencimiento < hoy:
            return True
    return False


def estado_objetivo(pagos, hoy):
    return ESTADO_MOROSO if tiene_obligacion_vencida(pagos, hoy) else ESTADO_ACTIVO


def _aplicar_estado(gw, residente, hoy):
    """Escribe el estado si cambia. Devuelve la entrada del registro de cambios o None."""
    pagos = gw.pagos.list(usuario_id=residente['id'], estados=ESTADOS_ADEUDADOS)
    nuevo = estado_objetivo(pagos, hoy)
    anterior = residente.get('estado') or ESTADO_ACTIVO
    if nuevo == anterior:
        return None
    gw.usuarios.update(residente['id'], estado=nuevo)
    cambio = {
        'resident_id': residente['id'],
        'name': residente.get('nombre'),
        'previous_status': anterior,
        'new_status': nuevo,
    }
    logger.info(f"Residente {residente['id']} ({residente.get('nombre')}): {anterior} -> {nuevo}")
    status_events.publish(dict(cambio))
    return cambio


def recompute_all_resident_statuses(gateway=None, today=None):
    """
    Recalcula el estado de todos los residentes no administradores.

    Un fallo con un residente se cuenta en `errors` y no detiene al resto.
    Solo un fallo al leer la lista inicial de usuarios se propaga.

    Returns:
        dict: {'total', 'updated', 'errors', 'change_log'}
    """
    gw = gateway or get_gateway()
    hoy = today or date.today()
    residentes = [u for u in gw.usuarios.list_all() if not es_admin(u.get('rol'))]

    resumen = {'total': len(residentes), 'updated': 0, 'errors': 0, 'change_log': []}
    for residente in residentes:
        try:
            cambio = _aplicar_estado(gw, residente, hoy)
        except Exception as e:
            resumen['errors'] += 1
            logger.error(f"Error recalculando el estado del residente {residente.get('id')}: {e}")
            continue
        if cambio:
            resumen['updated'] += 1
            resumen['change_log'].append(cambio)

    logger.info(
        f"Recalculo de morosidad ({hoy.isoformat()}): {resumen['total']} residentes, "
        f"{resumen['updated']} actualizados, {resumen['errors']} errores"
    )
    return resumen


def recompute_resident_status(resident_id, gateway=None, today=None):
    """Mismo cálculo para un único residente. Devuelve el cambio o None."""
    gw = gateway or get_gateway()
    residente = gw.usuarios.get(resident_id)
    if not residente:
        raise NotFoundError(f"No existe el residente {resident_id}.")
    if es_admin(residente.get('rol')):
        return None
    return _aplicar_estado(gw, residente, today or date.today())


def trigger_recompute(admin_id, gateway=None, today=None):
    """Lanzamiento manual desde la administración: exige rol administrador."""
    from .autenticacion import require_admin
    gw = gateway or get_gateway()
    require_admin(admin_id, gw)
    return recompute_all_resident_statuses(gw, today)
