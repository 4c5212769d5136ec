# condoportal/tasks.py
from datetime import date
from flask import current_app
from flask_mail import Message

from . import mail
from .errors import CondoPortalError
from .gateway import get_gateway
from .models import ESTADO_MOROSO
from .services.morosidad import recompute_all_resident_statuses


def send_email(recipient_email, subject, html_body):
    """Función auxiliar para enviar emails."""
    if not recipient_email:
        current_app.logger.warning(f"Intento de envío de email sin destinatario para: {subject}")
        return False

    sender_email = current_app.config.get('MAIL_DEFAULT_SENDER')
    sender_name = current_app.config.get('MAIL_SENDER_DISPLAY_NAME', 'CondoPortal')

    if not sender_email:
        current_app.logger.error(f"MAIL_DEFAULT_SENDER no configurado. No se pudo enviar email: {subject}")
        return False

    sender = (sender_name, sender_email) if sender_name else sender_email
    msg = Message(subject=subject, sender=sender, recipients=[recipient_email], html=html_body)
    try:
        mail.send(msg)
        current_app.logger.info(f"Email enviado a {recipient_email}: {subject}")
        return True
    except Exception as e:
        current_app.logger.error(f"Error enviando email a {recipient_email}: {e}", exc_info=True)
        return False


def _avisar_morosos(gw, change_log):
    for cambio in change_log:
        if cambio['new_status'] != ESTADO_MOROSO:
            continue
        try:
            usuario = gw.usuarios.get(cambio['resident_id'])
        except CondoPortalError as e:
            current_app.logger.error(f"No se pudo leer el residente {cambio['resident_id']} para avisarle: {e}")
            continue
        if not usuario:
            continue
        html_body = (
            f"<p>Estimado/a {usuario.get('nombre')},</p>"
            f"<p>Su cuenta presenta pagos vencidos y ha pasado a estado <strong>Moroso</strong>. "
            f"Mientras regulariza su situación solo podrá acceder a la sección de pagos del portal.</p>"
        )
        send_email(usuario.get('correo'), "Aviso: pagos vencidos en su cuenta", html_body)


# --- Tarea: Mantenimiento de Morosidad ---
def run_delinquency_maintenance(app_context):
    with app_context.app_context():
        current_app.logger.info("Tarea Programada: recalculando estados de morosidad...")
        gw = get_gateway()
        hoy = date.today()

        if current_app.config.get('DELINQUENCY_BULK_PREPASS'):
            try:
                marcados = gw.usuarios.mark_overdue_residents(hoy)
                current_app.logger.info(f"Barrido masivo previo: {marcados} residentes marcados como morosos.")
            except CondoPortalError as e:
                current_app.logger.warning(f"Barrido masivo previo fallido, se continúa con el recálculo: {e}")

        try:
            resumen = recompute_all_resident_statuses(gw, hoy)
        except CondoPortalError as e:
            current_app.logger.error(f"Recalculo de morosidad abortado: no se pudo leer la lista de residentes: {e}")
            return None

        current_app.logger.info(
            f"Morosidad recalculada: {resumen['total']} residentes, {resumen['updated']} actualizados, "
            f"{resumen['errors']} errores."
        )
        if current_app.config.get('MAIL_NOTIFICATIONS_ENABLED'):
            _avisar_morosos(gw, resumen['change_log'])
        return resumen
