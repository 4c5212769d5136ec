"""
Tests del contexto de sesión del residente y del bloqueo de cuentas morosas.
"""
from datetime import date, timedelta

import pytest

from condoportal.errors import TransientBackendError
from condoportal.services.morosidad import recompute_all_resident_statuses
from condoportal.services.pagos import validate_payment
from condoportal.utils.resident_session import RESIDENT_SESSION_KEY, SessionContext, invalidate

AJAX = {'Accept': 'application/json'}


class RelojFalso:
    def __init__(self):
        self.ahora = 500.0

    def __call__(self):
        return self.ahora


class PasarelaCaida:
    class usuarios:
        @staticmethod
        def get(usuario_id):
            raise TransientBackendError('sin conexión')


class TestSessionContext:

    @pytest.fixture
    def reloj(self):
        return RelojFalso()

    @pytest.fixture
    def ctx(self, reloj, residente):
        contexto = SessionContext({}, recheck_seconds=5, clock=reloj)
        contexto.start(residente)
        return contexto

    def test_start_guarda_la_copia(self, ctx, residente):
        assert ctx.is_authenticated
        assert ctx.resident_id == residente['id']
        assert ctx.snapshot['estado'] == 'Activo'
        assert 'password_hash' not in ctx.snapshot

    def test_copia_reciente_no_se_relee(self, gw, ctx, residente):
        gw.usuarios.update(residente['id'], estado='Moroso')
        assert ctx.reconcile(gw) is False
        assert ctx.is_moroso is False

    def test_copia_antigua_se_corrige(self, gw, ctx, reloj, residente):
        gw.usuarios.update(residente['id'], estado='Moroso', nombre='Ana María')
        reloj.ahora += 5

        assert ctx.reconcile(gw) is True
        assert ctx.is_moroso
        assert ctx.snapshot['nombre'] == 'Ana María'
        assert ctx.snapshot['verificado_en'] == reloj.ahora

    def test_invalidacion_fuerza_la_relectura(self, gw, ctx, residente):
        gw.usuarios.update(residente['id'], estado='Moroso')
        invalidate(residente['id'])

        assert ctx.reconcile(gw) is True
        assert ctx.is_moroso

    def test_recalculo_invalida_la_sesion(self, gw, ctx, make_pago, residente, hoy):
        make_pago(residente['id'], hoy - timedelta(days=1))
        recompute_all_resident_statuses(gw, hoy)

        assert ctx.reconcile(gw) is True
        assert ctx.is_moroso

    def test_fallo_de_pasarela_mantiene_la_copia(self, ctx, reloj):
        reloj.ahora += 60
        assert ctx.reconcile(PasarelaCaida()) is False
        assert ctx.snapshot['estado'] == 'Activo'

    def test_clear(self, ctx):
        ctx.clear()
        assert not ctx.is_authenticated
        assert ctx.reconcile(None) is False


class TestBloqueoDeMorosos:

    def _volver_moroso(self, gw, make_pago, usuario):
        make_pago(usuario['id'], date.today() - timedelta(days=3))
        recompute_all_resident_statuses(gw)

    def test_activo_navega_libremente(self, client, login, residente):
        assert login('ana@condominio.com').status_code == 200
        assert client.get('/notificaciones/', headers=AJAX).status_code == 200
        assert client.get('/comunidad/anuncios', headers=AJAX).status_code == 200

    def test_moroso_solo_accede_a_pagos(self, client, gw, login, make_pago, residente):
        login('ana@condominio.com')
        self._volver_moroso(gw, make_pago, residente)

        respuesta = client.get('/notificaciones/', headers=AJAX)
        assert respuesta.status_code == 403
        assert respuesta.get_json()['error'] == 'cuenta_morosa'
        assert respuesta.get_json()['redirect_url'] == '/pagos/bloqueo'

        respuesta = client.get('/comunidad/anuncios')
        assert respuesta.status_code == 302
        assert respuesta.headers['Location'].endswith('/pagos/bloqueo')

        assert client.get('/pagos/solicitar', headers=AJAX).status_code == 200
        bloqueo = client.get('/pagos/bloqueo', headers=AJAX)
        assert bloqueo.status_code == 200
        assert len(bloqueo.get_json()['pagos_vencidos']) == 1
        assert client.get('/auth/yo', headers=AJAX).get_json()['moroso'] is True

    def test_login_de_moroso_redirige_al_bloqueo(self, gw, login, make_pago, residente):
        self._volver_moroso(gw, make_pago, residente)

        respuesta = login('ana@condominio.com')

        assert respuesta.status_code == 200
        assert respuesta.get_json()['redirect_url'] == '/pagos/bloqueo'

    def test_aprobacion_desbloquea_en_la_siguiente_peticion(self, client, gw, admin, login, make_pago, residente):
        login('ana@condominio.com')
        make_pago(residente['id'], date.today() - timedelta(days=3))
        recompute_all_resident_statuses(gw)
        assert client.get('/notificaciones/', headers=AJAX).status_code == 403

        deuda = gw.pagos.list(usuario_id=residente['id'])[0]
        validate_payment(deuda['id'], admin['id'], 'aprobado', gateway=gw)

        assert client.get('/notificaciones/', headers=AJAX).status_code == 200

    def test_logout_limpia_la_sesion(self, client, login, residente):
        login('ana@condominio.com')
        assert client.post('/auth/logout', headers=AJAX).status_code == 200
        with client.session_transaction() as sesion:
            assert RESIDENT_SESSION_KEY not in sesion
        assert client.get('/notificaciones/', headers=AJAX).status_code == 401
