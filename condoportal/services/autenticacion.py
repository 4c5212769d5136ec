# condoportal/services/autenticacion.py
"""
Autenticación, registro y recuperación de contraseña de residentes.
"""
import logging
from datetime import datetime

from ..errors import AuthorizationError, CondoPortalError, InvalidTransitionError, NotFoundError, ValidationError
from ..gateway import get_gateway
from ..models import ESTADO_ACTIVO, ROLES, ROLES_SOLICITABLES, es_admin
from ..utils.security import hash_password, check_password, hash_answer, verify_answer
from .notificaciones import notify, notify_admins

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
CAMPOS_PRIVADOS = ('password_hash', 'preguntas_seguridad')


def public_user(usuario):
    """Copia del usuario sin hash de contraseña ni respuestas de seguridad."""
    if usuario is None:
        return None
    datos = {k: v for k, v in usuario.items() if k not in CAMPOS_PRIVADOS}
    datos['estado'] = datos.get('estado') or ESTADO_ACTIVO
    return datos


def require_admin(usuario_id, gateway=None):
    """
    Relee el usuario en la pasarela y exige rol administrador.

    Returns:
        dict: el administrador

    Raises:
        AuthorizationError: si el usuario no existe o no es administrador
    """
    gw = gateway or get_gateway()
    usuario = gw.usuarios.get(usuario_id) if usuario_id is not None else None
    if not usuario or not es_admin(usuario.get('rol')):
        logger.warning(f"Operación de administrador denegada al usuario {usuario_id}")
        raise AuthorizationError('Solo un administrador puede realizar esta acción.')
    return usuario


def authenticate(correo, password, gateway=None):
    """
    Valida credenciales.

    Returns:
        dict or None: usuario público si las credenciales son correctas

    Raises:
        AuthorizationError: si el registro aún no tiene rol asignado
    """
    gw = gateway or get_gateway()
    usuario = gw.usuarios.find_by_email(correo)
    if not usuario or not check_password(usuario.get('password_hash'), password or ''):
        logger.info(f"Intento de inicio de sesión fallido para '{correo}'")
        return None
    if not usuario.get('rol'):
        raise AuthorizationError('Su registro está pendiente de aprobación por la administración.')
    logger.info(f"Inicio de sesión correcto: usuario {usuario['id']} ({usuario.get('rol')})")
    return public_user(usuario)


def _preguntas_hasheadas(preguntas):
    resultado = []
    for item in preguntas or []:
        pregunta = (item.get('pregunta') or '').strip()
        respuesta = item.get('respuesta')
        if not pregunta or not (respuesta or '').strip():
            raise ValidationError('Cada pregunta de seguridad necesita pregunta y respuesta.')
        resultado.append({'pregunta': pregunta, 'respuesta_hash': hash_answer(respuesta)})
    return resultado


def _validar_password(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres.')


def _tipo_relacion(rol):
    return 'propietario' if rol == 'propietario' else 'residente'


def register_resident(nombre, correo, password, numero_vivienda=None, condominio_id=None,
                      rol=None, rol_solicitado='residente', telefono=None, preguntas=None, gateway=None):
    """
    Crea un usuario en estado Activo, sin pagos, y lo vincula a su vivienda.

    Sin `rol` el registro queda pendiente de aprobación: no puede iniciar
    sesión, su vínculo con la vivienda queda inactivo y los administradores
    reciben una solicitud con acción requerida. Con `rol` (altas hechas por
    la administración o datos de prueba) el usuario queda operativo.

    Args:
        rol_solicitado (str): rol que pide el usuario; se propone al aprobar.
        preguntas (list): lista de {'pregunta', 'respuesta'}; las respuestas se
            normalizan y se guardan con hash.
    """
    gw = gateway or get_gateway()
    nombre = (nombre or '').strip()
    correo = (correo or '').strip().lower()
    if not nombre or not correo:
        raise ValidationError('El nombre y el correo son obligatorios.')
    _validar_password(password)
    if rol is not None and rol not in ROLES:
        raise ValidationError(f"Rol no válido: {rol}")
    rol_solicitado = rol_solicitado or 'residente'
    if rol_solicitado not in ROLES_SOLICITABLES:
        raise ValidationError(f"No se puede solicitar el rol '{rol_solicitado}'.")
    if gw.usuarios.find_by_email(correo):
        raise ValidationError('Ya existe un usuario registrado con ese correo.')

    usuario = gw.usuarios.create({
        'nombre': nombre,
        'correo': correo,
        'password_hash': hash_password(password),
        'rol': rol,
        'rol_solicitado': rol_solicitado,
        'estado': ESTADO_ACTIVO,
        'telefono': telefono,
        'condominio_id': condominio_id,
        'preguntas_seguridad': _preguntas_hasheadas(preguntas),
        'created_at': datetime.now(),
    })

    numero = (numero_vivienda or '').strip()
    if numero:
        vivienda = gw.viviendas.find_by_numero(numero, condominio_id)
        if not vivienda:
            vivienda = gw.viviendas.create({'numero_vivienda': numero, 'condominio_id': condominio_id, 'activo': True})
            logger.info(f"Vivienda '{numero}' creada durante el registro del usuario {usuario['id']}")
        # Un registro pendiente no cuenta como asociado a la vivienda hasta que se aprueba
        gw.viviendas.link_resident(usuario['id'], vivienda['id'], _tipo_relacion(rol or rol_solicitado),
                                   activo=rol is not None)

    if rol is None:
        vivienda_txt = f", vivienda {numero}" if numero else ''
        notify_admins(
            'solicitud_registro',
            f"El usuario {nombre} ({correo}{vivienda_txt}) ha solicitado registrarse con el rol de "
            f"{rol_solicitado}. Por favor, revisa y aprueba o rechaza la solicitud.",
            relacion_entidad='usuarios',
            relacion_id=usuario['id'],
            gateway=gw,
        )
        logger.info(f"Usuario {usuario['id']} registrado ({correo}), pendiente de aprobación")
    else:
        logger.info(f"Usuario {usuario['id']} registrado ({correo}, rol={rol})")
    return public_user(usuario)


# --- Aprobación de registros ---
def _pendiente(gw, usuario_id):
    usuario = gw.usuarios.get(usuario_id)
    if not usuario:
        raise NotFoundError('Usuario no encontrado.')
    if usuario.get('rol') is not None:
        raise InvalidTransitionError('El registro de este usuario ya fue resuelto.')
    return usuario


def _cerrar_solicitud(gw, usuario_id, admin_id):
    """Marca como leída la solicitud de registro que recibió el administrador que la resuelve."""
    try:
        for notificacion in gw.notificaciones.list_for(admin_id):
            if (notificacion.get('tipo') == 'solicitud_registro'
                    and notificacion.get('relacion_entidad') == 'usuarios'
                    and notificacion.get('relacion_id') == usuario_id
                    and not notificacion.get('leida')):
                gw.notificaciones.update(notificacion['id'], leida=True, fecha_lectura=datetime.now())
    except CondoPortalError as e:
        logger.error(f"No se pudo cerrar la solicitud de registro del usuario {usuario_id}: {e}")


def list_pending_users(admin_id, gateway=None):
    gw = gateway or get_gateway()
    require_admin(admin_id, gw)
    return [public_user(u) for u in gw.usuarios.list_pending()]


def approve_user(usuario_id, rol, admin_id, gateway=None):
    """
    Asigna el rol a un registro pendiente y activa sus vínculos de vivienda.
    El usuario queda Activo (sin pagos) y recibe una notificación.

    Raises:
        AuthorizationError: si quien aprueba no es administrador
        InvalidTransitionError: si el registro ya no está pendiente
    """
    gw = gateway or get_gateway()
    require_admin(admin_id, gw)
    usuario = _pendiente(gw, usuario_id)
    rol = rol or usuario.get('rol_solicitado') or 'residente'
    if rol not in ROLES:
        raise ValidationError(f"Rol no válido: {rol}")

    usuario = gw.usuarios.update(usuario_id, rol=rol, estado=ESTADO_ACTIVO)
    activados = gw.viviendas.activate_links(usuario_id)
    logger.info(f"Administrador {admin_id} aprobó al usuario {usuario_id} con rol {rol} ({activados} viviendas activadas)")

    notify(
        usuario_id,
        'aprobacion_registro',
        'Tu solicitud de registro ha sido aprobada. Ahora puedes iniciar sesión con tu cuenta.',
        relacion_entidad='usuarios',
        relacion_id=usuario_id,
        gateway=gw,
    )
    _cerrar_solicitud(gw, usuario_id, admin_id)
    return public_user(usuario)


def reject_user(usuario_id, motivo, admin_id, gateway=None):
    """
    Rechaza un registro pendiente: el usuario y sus vínculos se eliminan.

    Returns:
        dict: {'mensaje', 'correo'} para comunicar el rechazo fuera del portal
    """
    gw = gateway or get_gateway()
    require_admin(admin_id, gw)
    usuario = _pendiente(gw, usuario_id)
    mensaje = (f"Tu solicitud de registro ha sido rechazada. Motivo: {(motivo or '').strip() or 'No especificado'}. "
               f"Puedes contactar a la administración si tienes preguntas.")

    gw.usuarios.delete(usuario_id)
    logger.info(f"Administrador {admin_id} rechazó el registro del usuario {usuario_id} ({usuario.get('correo')})")
    _cerrar_solicitud(gw, usuario_id, admin_id)
    return {'mensaje': mensaje, 'correo': usuario.get('correo')}


def set_security_questions(usuario_id, preguntas, gateway=None):
    gw = gateway or get_gateway()
    hasheadas = _preguntas_hasheadas(preguntas)
    if not hasheadas:
        raise ValidationError('Debe indicar al menos una pregunta de seguridad.')
    gw.usuarios.update(usuario_id, preguntas_seguridad=hasheadas)
    return [p['pregunta'] for p in hasheadas]


def get_security_questions(correo, gateway=None):
    gw = gateway or get_gateway()
    usuario = gw.usuarios.find_by_email(correo)
    if not usuario:
        raise NotFoundError('No existe un usuario con ese correo.')
    return [p['pregunta'] for p in (usuario.get('preguntas_seguridad') or [])]


def reset_password_with_security_questions(correo, respuestas, nueva_password, gateway=None):
    """
    Restablece la contraseña si todas las respuestas coinciden, en orden.
    Los administradores reciben una notificación (sin bloquear si falla).
    """
    gw = gateway or get_gateway()
    usuario = gw.usuarios.find_by_email(correo)
    if not usuario:
        raise NotFoundError('No existe un usuario con ese correo.')

    preguntas = usuario.get('preguntas_seguridad') or []
    respuestas = list(respuestas or [])
    if not preguntas:
        raise AuthorizationError('El usuario no tiene preguntas de seguridad configuradas.')
    if len(respuestas) != len(preguntas) or not all(
            verify_answer(p.get('respuesta_hash'), r) for p, r in zip(preguntas, respuestas)):
        logger.warning(f"Respuestas de seguridad incorrectas para el usuario {usuario['id']}")
        raise AuthorizationError('Las respuestas de seguridad no son correctas.')

    _validar_password(nueva_password)
    gw.usuarios.update(usuario['id'], password_hash=hash_password(nueva_password))
    logger.info(f"Contraseña restablecida por preguntas de seguridad para el usuario {usuario['id']}")

    notify_admins(
        'recuperacion_contraseña',
        f"El usuario {usuario.get('nombre')} ({usuario.get('correo')}) restableció su contraseña "
        f"mediante preguntas de seguridad.",
        relacion_entidad='usuarios',
        relacion_id=usuario['id'],
        gateway=gw,
    )
    return True
