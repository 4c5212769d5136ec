"""
Tests de notificaciones y de la campana de avisos.
"""
import pytest
from sqlalchemy.exc import OperationalError

from condoportal import db
from condoportal.errors import AuthorizationError, NotFoundError, TransientBackendError
from condoportal.events import payment_events
from condoportal.services.notificaciones import (
    NotificationBell, delete_notification, delete_read_notifications, derive_title, list_notifications,
    mark_read, notify, notify_admins, unread_count,
)


class RelojFalso:
    def __init__(self):
        self.ahora = 1000.0

    def __call__(self):
        return self.ahora


def test_notify_crea_fila_no_leida(gw, residente):
    notificacion = notify(residente['id'], 'pago_aprobado', 'Su pago ha sido aprobado.', 'pagos', 7, gateway=gw)

    assert notificacion['leida'] is False
    assert notificacion['titulo'] == 'Pago Aprobado'
    assert notificacion['relacion_entidad'] == 'pagos'
    assert unread_count(residente['id'], gateway=gw) == 1


def test_notify_no_propaga_errores(gw, residente, monkeypatch):
    def falla(datos):
        raise TransientBackendError('caído')
    monkeypatch.setattr(gw.notificaciones, 'create', falla)

    assert notify(residente['id'], 'pago_aprobado', 'mensaje', gateway=gw) is None


def test_notify_admins_excluye_residentes(gw, admin, residente, make_user):
    heredado = make_user('Beatriz Admin', correo='beatriz@condominio.com', rol='Administrador')

    creadas = notify_admins('nueva_solicitud_pago', 'Nueva solicitud', 'pagos', 3, gateway=gw)

    assert sorted(n['usuario_id'] for n in creadas) == sorted([admin['id'], heredado['id']])
    assert all(n['accion_requerida'] for n in creadas)
    assert list_notifications(residente['id'], gateway=gw) == []


@pytest.mark.parametrize('tipo, entidad, titulo', [
    ('pago_rechazado', None, 'Pago Rechazado'),
    ('nueva_solicitud_pago', 'pagos', 'Nueva acción requerida'),
    ('desconocido', 'pagos', 'Actualización de pago'),
    ('desconocido', None, 'Notificación'),
])
def test_derive_title(tipo, entidad, titulo):
    assert derive_title(tipo, entidad) == titulo


def test_no_leidas_primero(gw, residente):
    primera = notify(residente['id'], 'pago_aprobado', 'uno', gateway=gw)
    segunda = notify(residente['id'], 'pago_aprobado', 'dos', gateway=gw)
    tercera = notify(residente['id'], 'pago_aprobado', 'tres', gateway=gw)
    mark_read(tercera['id'], residente['id'], gateway=gw)

    ids = [n['id'] for n in list_notifications(residente['id'], gateway=gw)]

    assert ids == [segunda['id'], primera['id'], tercera['id']]


def test_solo_el_destinatario_puede_modificarla(gw, admin, residente):
    notificacion = notify(residente['id'], 'pago_aprobado', 'mensaje', gateway=gw)

    with pytest.raises(AuthorizationError):
        mark_read(notificacion['id'], admin['id'], gateway=gw)
    with pytest.raises(AuthorizationError):
        delete_notification(notificacion['id'], admin['id'], gateway=gw)
    with pytest.raises(NotFoundError):
        mark_read(999, residente['id'], gateway=gw)


def test_eliminar_leidas(gw, residente):
    leida = notify(residente['id'], 'pago_aprobado', 'uno', gateway=gw)
    pendiente = notify(residente['id'], 'pago_aprobado', 'dos', gateway=gw)
    mark_read(leida['id'], residente['id'], gateway=gw)

    assert delete_read_notifications(residente['id'], gateway=gw) == 1
    assert [n['id'] for n in list_notifications(residente['id'], gateway=gw)] == [pendiente['id']]
    assert delete_read_notifications(residente['id'], gateway=gw) == 0


class TestCampana:

    @pytest.fixture
    def reloj(self):
        return RelojFalso()

    @pytest.fixture
    def campana_admin(self, gw, admin, reloj):
        campana = NotificationBell(admin, gw, poll_interval=30, clock=reloj).start()
        yield campana
        campana.stop()

    def test_avisos_existentes_no_se_repiten_al_arrancar(self, gw, admin, make_pago, residente, reloj):
        notify(admin['id'], 'nueva_solicitud_pago', 'previa', gateway=gw)
        make_pago(residente['id'])

        campana = NotificationBell(admin, gw, clock=reloj).start()
        try:
            assert campana.drain() == []
        finally:
            campana.stop()

    def test_pago_pendiente_llega_por_evento_y_no_se_duplica_al_sondear(self, campana_admin, make_pago, residente, reloj):
        pago = make_pago(residente['id'])

        alertas = campana_admin.drain()
        assert [a['pago_id'] for a in alertas] == [pago['id']]

        reloj.ahora += 31
        campana_admin.poll()
        assert campana_admin.drain() == []

    def test_pagos_no_pendientes_se_ignoran(self, campana_admin, make_pago, residente):
        make_pago(residente['id'], estado='aprobado')
        assert campana_admin.drain() == []

    def test_sondeo_respeta_el_intervalo(self, gw, campana_admin, admin, reloj):
        notify(admin['id'], 'nueva_solicitud_pago', 'nueva', gateway=gw)

        assert campana_admin.poll() == 0
        reloj.ahora += 30
        assert campana_admin.poll() == 1
        assert campana_admin.drain()[0]['mensaje'] == 'nueva'

    def test_residente_no_se_suscribe_a_pagos(self, gw, residente, reloj):
        antes = len(payment_events)
        campana = NotificationBell(residente, gw, clock=reloj).start()
        try:
            assert len(payment_events) == antes
        finally:
            campana.stop()

    def test_tope_de_vistos(self, gw, residente, reloj):
        campana = NotificationBell(residente, gw, cap=3, clock=reloj)

        for clave in range(5):
            assert campana._registrar(('notificacion', clave))
        assert len(campana._vistos) == 3
        # La más antigua fue expulsada y vuelve a contar como nueva
        assert campana._registrar(('notificacion', 0))
        assert not campana._registrar(('notificacion', 4))

    def test_stop_cancela_la_suscripcion(self, gw, admin, reloj):
        antes = len(payment_events)
        campana = NotificationBell(admin, gw, clock=reloj).start()
        assert len(payment_events) == antes + 1
        campana.stop()
        assert len(payment_events) == antes

    def test_alertas_sin_consumir_no_crecen_sin_limite(self, gw, admin, make_pago, residente, reloj):
        campana = NotificationBell(admin, gw, cap=3, clock=reloj).start()
        try:
            pagos = [make_pago(residente['id']) for _ in range(5)]
            assert len(campana._alertas) == 3
            assert [a['pago_id'] for a in campana.drain()] == [p['id'] for p in pagos[2:]]
        finally:
            campana.stop()


def test_pago_sin_confirmar_no_se_anuncia(app, gw, residente, make_pago, monkeypatch):
    if app.config['DATA_BACKEND'] != 'sql':
        pytest.skip('solo el backend SQL confirma transacciones')
    recibidos = []
    cancelar = payment_events.subscribe(recibidos.append)
    try:
        commit_original = db.session.commit

        def commit_fallido():
            db.session.flush()
            raise OperationalError('COMMIT', {}, Exception('disco lleno'))
        monkeypatch.setattr(db.session, 'commit', commit_fallido)

        with pytest.raises(TransientBackendError):
            make_pago(residente['id'])
        assert recibidos == []
        assert gw.pagos.list() == []

        monkeypatch.setattr(db.session, 'commit', commit_original)
        pago = make_pago(residente['id'])
        assert [p['id'] for p in recibidos] == [pago['id']]
    finally:
        cancelar()
