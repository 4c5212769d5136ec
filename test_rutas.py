"""
Tests de los endpoints JSON del portal.
"""
import io

import pytest

from conftest import PASSWORD, PNG_BYTES
from condoportal.services.autenticacion import approve_user

AJAX = {'Accept': 'application/json'}


def _formulario_pago(numero='A-101', descripcion='Cuota junio', contenido=PNG_BYTES, nombre='comprobante.png', **extra):
    datos = {'numero_vivienda': numero, 'descripcion': descripcion, 'monto': '120.00', 'referencia': 'TRX-9'}
    if contenido is not None:
        datos['comprobante'] = (io.BytesIO(contenido), nombre, 'image/png')
    datos.update(extra)
    return datos


@pytest.fixture
def cliente_admin(app, admin):
    cliente = app.test_client()
    cliente.post('/auth/login', json={'correo': 'admin@condominio.com', 'password': PASSWORD})
    return cliente


@pytest.fixture
def cliente_residente(app, residente):
    cliente = app.test_client()
    cliente.post('/auth/login', json={'correo': 'ana@condominio.com', 'password': PASSWORD})
    return cliente


@pytest.fixture
def pago_enviado(cliente_residente):
    respuesta = cliente_residente.post('/pagos/solicitar', data=_formulario_pago(), content_type='multipart/form-data')
    assert respuesta.status_code == 201
    return respuesta.get_json()['pago']


def test_index(client):
    respuesta = client.get('/')
    assert respuesta.status_code == 200
    assert respuesta.get_json()['usuario'] is None


class TestAuth:

    def _registrar(self, client, **extra):
        datos = {
            'nombre': 'Laura Nueva',
            'correo': 'laura@condominio.com',
            'password': 'clave-larga-1',
            'confirm_password': 'clave-larga-1',
            'numero_vivienda': 'C-303',
            'preguntas_seguridad': [{'pregunta': '¿Color favorito?', 'respuesta': 'Azul'}],
        }
        datos.update(extra)
        return client.post('/auth/registro', json=datos)

    def test_registro_aprobacion_y_login(self, client, cliente_admin):
        respuesta = self._registrar(client)
        assert respuesta.status_code == 201
        assert respuesta.get_json()['pendiente'] is True
        usuario_id = respuesta.get_json()['usuario']['id']

        pendiente = client.post('/auth/login', json={'correo': 'laura@condominio.com', 'password': 'clave-larga-1'})
        assert pendiente.status_code == 403
        assert 'pendiente' in pendiente.get_json()['mensaje']

        aprobado = cliente_admin.post(f'/admin/usuarios/{usuario_id}/aprobar', json={})
        assert aprobado.status_code == 200
        assert aprobado.get_json()['usuario']['rol'] == 'residente'

        login = client.post('/auth/login', json={'correo': 'laura@condominio.com', 'password': 'clave-larga-1'})
        assert login.status_code == 200
        assert login.get_json()['redirect_url'] == '/'

        preguntas = client.get('/auth/preguntas?correo=laura@condominio.com')
        assert preguntas.get_json()['preguntas'] == ['¿Color favorito?']

    def test_registro_sobre_vivienda_ajena_no_la_asocia(self, gw, client, residente, admin):
        respuesta = self._registrar(client, correo='intruso@condominio.com', numero_vivienda='A-101')
        assert respuesta.status_code == 201
        assert client.post('/auth/login', json={'correo': 'intruso@condominio.com',
                                                'password': 'clave-larga-1'}).status_code == 403

        intruso = gw.usuarios.find_by_email('intruso@condominio.com')
        assert gw.viviendas.resolve_for_resident(intruso['id'], 'A-101') is None

    def test_registro_con_correo_repetido(self, client, residente):
        respuesta = client.post('/auth/registro', json={
            'nombre': 'Otra Ana', 'correo': 'ana@condominio.com',
            'password': 'clave-larga-1', 'confirm_password': 'clave-larga-1',
        })
        assert respuesta.status_code == 400
        assert respuesta.get_json()['error'] == 'validacion'

    def test_login_incorrecto(self, client, residente):
        respuesta = client.post('/auth/login', json={'correo': 'ana@condominio.com', 'password': 'incorrecta'})
        assert respuesta.status_code == 401
        assert respuesta.get_json()['error'] == 'credenciales'

    def test_recuperar_password(self, gw, client, admin):
        usuario_id = self._registrar(client).get_json()['usuario']['id']
        approve_user(usuario_id, None, admin['id'], gateway=gw)

        respuesta = client.post('/auth/recuperar', json={
            'correo': 'laura@condominio.com', 'respuestas': ['AZUL'],
            'nueva_password': 'nueva-clave-99', 'confirm_password': 'nueva-clave-99',
        })
        assert respuesta.status_code == 200
        login = client.post('/auth/login', json={'correo': 'laura@condominio.com', 'password': 'nueva-clave-99'})
        assert login.status_code == 200

    def test_cambiar_preguntas_de_seguridad(self, cliente_residente):
        respuesta = cliente_residente.post('/auth/preguntas', json={
            'preguntas_seguridad': [{'pregunta': '¿Calle de la infancia?', 'respuesta': 'Las Damas'}],
        })
        assert respuesta.status_code == 200
        assert respuesta.get_json()['preguntas'] == ['¿Calle de la infancia?']

        recuperada = cliente_residente.post('/auth/recuperar', json={
            'correo': 'ana@condominio.com', 'respuestas': ['las  damas'],
            'nueva_password': 'nueva-clave-99', 'confirm_password': 'nueva-clave-99',
        })
        assert recuperada.status_code == 200

    def test_cambiar_preguntas_requiere_sesion(self, client):
        respuesta = client.post('/auth/preguntas', json={'preguntas_seguridad': []}, headers=AJAX)
        assert respuesta.status_code == 401

    def test_logout_libera_la_campana(self, app, cliente_admin, admin):
        cliente_admin.get('/notificaciones/campana', headers=AJAX)
        campana = app.extensions['condoportal_bells'][admin['id']]
        assert campana._suscrito

        cliente_admin.post('/auth/logout', headers=AJAX)

        assert admin['id'] not in app.extensions['condoportal_bells']
        assert not campana._suscrito

    def test_requiere_sesion(self, client):
        respuesta = client.get('/pagos/mis-pagos', headers=AJAX)
        assert respuesta.status_code == 401
        assert respuesta.get_json()['error'] == 'no_autenticado'


class TestPagos:

    def test_solicitud_por_formulario(self, gw, cliente_residente, pago_enviado):
        assert pago_enviado['estado'] == 'pendiente'
        assert pago_enviado['monto'] == pytest.approx(120.0)
        mis_pagos = cliente_residente.get('/pagos/mis-pagos', headers=AJAX).get_json()['pagos']
        assert [p['id'] for p in mis_pagos] == [pago_enviado['id']]

    def test_sin_comprobante(self, cliente_residente):
        respuesta = cliente_residente.post('/pagos/solicitar', data=_formulario_pago(contenido=None),
                                           content_type='multipart/form-data')
        assert respuesta.status_code == 400
        assert respuesta.get_json()['error'] == 'validacion'

    @pytest.mark.parametrize('monto', ['1e30', 'Infinity'])
    def test_monto_fuera_de_rango(self, gw, cliente_residente, monto):
        respuesta = cliente_residente.post('/pagos/solicitar', data=_formulario_pago(monto=monto),
                                           content_type='multipart/form-data')
        assert respuesta.status_code == 400
        assert respuesta.get_json()['error'] == 'validacion'
        assert gw.pagos.list() == []

    def test_vivienda_ajena(self, cliente_residente):
        respuesta = cliente_residente.post('/pagos/solicitar', data=_formulario_pago(numero='Z-999'),
                                           content_type='multipart/form-data')
        assert respuesta.status_code == 403
        assert respuesta.get_json()['error'] == 'vivienda_no_asociada'

    def test_peticion_demasiado_grande(self, app, cliente_residente):
        app.config['MAX_CONTENT_LENGTH'] = 1024
        respuesta = cliente_residente.post('/pagos/solicitar', data=_formulario_pago(contenido=b'\x00' * 4096),
                                           content_type='multipart/form-data')
        assert respuesta.status_code == 413
        assert 'tamaño máximo' in respuesta.get_json()['mensaje']

    def test_comprobante_visible_para_dueno_y_admin(self, app, make_user, cliente_residente, cliente_admin,
                                                    pago_enviado):
        url = f"/pagos/{pago_enviado['id']}/comprobante"
        assert cliente_residente.get(url, headers=AJAX).status_code == 200
        assert cliente_admin.get(url, headers=AJAX).get_json()['tipo_mime'] == 'image/png'

        descarga = cliente_residente.get(url + '/descargar')
        assert descarga.status_code == 200
        assert descarga.data == PNG_BYTES

        make_user('Carlos Vecino', correo='carlos@condominio.com')
        otro = app.test_client()
        otro.post('/auth/login', json={'correo': 'carlos@condominio.com', 'password': PASSWORD})
        assert otro.get(url, headers=AJAX).status_code == 403


class TestAdministracion:

    def test_residente_no_entra(self, cliente_residente):
        respuesta = cliente_residente.get('/admin/pagos/pendientes', headers=AJAX)
        assert respuesta.status_code == 403
        assert respuesta.get_json()['error'] == 'no_autorizado'

    def test_validar_pago(self, gw, cliente_admin, pago_enviado, residente):
        pendientes = cliente_admin.get('/admin/pagos/pendientes', headers=AJAX).get_json()['pagos']
        assert [p['id'] for p in pendientes] == [pago_enviado['id']]

        url = f"/admin/pagos/{pago_enviado['id']}/validar"
        respuesta = cliente_admin.post(url, json={'decision': 'rechazado', 'motivo': 'Monto incorrecto'})
        assert respuesta.status_code == 200
        assert respuesta.get_json()['pago']['estado'] == 'rechazado'

        repetida = cliente_admin.post(url, json={'decision': 'aprobado'})
        assert repetida.status_code == 409
        assert repetida.get_json()['error'] == 'transicion_invalida'

        aviso = gw.notificaciones.list_for(residente['id'])[0]
        assert 'Motivo: Monto incorrecto' in aviso['mensaje']

    def test_registros_pendientes(self, gw, client, cliente_admin, cliente_residente):
        client.post('/auth/registro', json={
            'nombre': 'Laura Nueva', 'correo': 'laura@condominio.com',
            'password': 'clave-larga-1', 'confirm_password': 'clave-larga-1', 'numero_vivienda': 'C-303',
        })
        pendientes = cliente_admin.get('/admin/usuarios/pendientes', headers=AJAX).get_json()['usuarios']
        assert [u['correo'] for u in pendientes] == ['laura@condominio.com']
        assert cliente_residente.get('/admin/usuarios/pendientes', headers=AJAX).status_code == 403

        url = f"/admin/usuarios/{pendientes[0]['id']}/rechazar"
        rechazo = cliente_admin.post(url, json={'motivo': 'No reside en el condominio'})
        assert rechazo.status_code == 200
        assert 'No reside en el condominio' in rechazo.get_json()['mensaje']
        assert gw.usuarios.find_by_email('laura@condominio.com') is None
        assert cliente_admin.post(url, json={}).status_code == 404

    def test_aprobar_usuario_activo(self, cliente_admin, residente):
        respuesta = cliente_admin.post(f"/admin/usuarios/{residente['id']}/aprobar", json={'rol': 'admin'})
        assert respuesta.status_code == 409
        assert respuesta.get_json()['error'] == 'transicion_invalida'

    def test_pagos_masivos(self, gw, cliente_admin, residente):
        respuesta = cliente_admin.post('/admin/pagos/masivos', json={
            'concepto': 'Cuota julio', 'monto': '75.00', 'fecha_vencimiento': '2024-07-01', 'tipo': 'mantenimiento',
        })
        assert respuesta.status_code == 201
        assert [p['usuario_id'] for p in respuesta.get_json()['pagos']] == [residente['id']]

    def test_recalcular_estados(self, cliente_admin, residente, make_pago):
        make_pago(residente['id'], '2000-01-01')
        respuesta = cliente_admin.post('/admin/mantenimiento/estados', headers=AJAX)
        resumen = respuesta.get_json()
        assert respuesta.status_code == 200
        assert resumen['total'] == 1
        assert resumen['change_log'][0]['new_status'] == 'Moroso'


class TestNotificaciones:

    def test_campana_del_administrador(self, cliente_admin, cliente_residente):
        primera = cliente_admin.get('/notificaciones/campana', headers=AJAX).get_json()
        assert primera['alertas'] == []
        assert primera['intervalo_ms'] == 30000

        cliente_residente.post('/pagos/solicitar', data=_formulario_pago(), content_type='multipart/form-data')

        segunda = cliente_admin.get('/notificaciones/campana?forzar=1', headers=AJAX).get_json()
        assert sorted(a['tipo'] for a in segunda['alertas']) == ['notificacion', 'nuevo_pago']
        assert segunda['no_leidas'] == 1

        tercera = cliente_admin.get('/notificaciones/campana?forzar=1', headers=AJAX).get_json()
        assert tercera['alertas'] == []

    def test_leer_y_eliminar(self, gw, admin, cliente_admin, cliente_residente, pago_enviado, residente):
        notificacion = gw.notificaciones.list_for(admin['id'])[0]

        assert cliente_residente.post(f"/notificaciones/{notificacion['id']}/leer", headers=AJAX).status_code == 403

        leida = cliente_admin.post(f"/notificaciones/{notificacion['id']}/leer", headers=AJAX)
        assert leida.get_json()['notificacion']['leida'] is True

        borrado = cliente_admin.post('/notificaciones/eliminar-leidas', headers=AJAX).get_json()
        assert borrado['eliminadas'] == 1
        assert cliente_admin.get('/notificaciones/', headers=AJAX).get_json()['notificaciones'] == []


class TestComunidad:

    def test_anuncios(self, cliente_residente):
        creado = cliente_residente.post('/comunidad/anuncios', json={'titulo': 'Corte de agua', 'contenido': 'Jueves 9-12h'})
        assert creado.status_code == 201
        anuncios = cliente_residente.get('/comunidad/anuncios', headers=AJAX).get_json()['anuncios']
        assert [a['titulo'] for a in anuncios] == ['Corte de agua']

    def test_solicitud_de_mantenimiento(self, cliente_residente, cliente_admin):
        creada = cliente_residente.post('/comunidad/mantenimiento', json={
            'titulo': 'Fuga', 'descripcion': 'Fuga en el baño', 'prioridad': 'alta'})
        assert creada.status_code == 201
        assert len(cliente_admin.get('/comunidad/mantenimiento', headers=AJAX).get_json()['solicitudes']) == 1

    def test_eliminar_espacio_avisa_al_creador(self, gw, residente, cliente_residente, cliente_admin):
        espacio = cliente_residente.post('/comunidad/espacios', json={'nombre': 'Piscina', 'capacidad': 20}).get_json()['espacio']

        assert cliente_residente.post(f"/comunidad/espacios/{espacio['id']}/eliminar", headers=AJAX).status_code == 403
        assert cliente_admin.post(f"/comunidad/espacios/{espacio['id']}/eliminar", headers=AJAX).status_code == 200

        assert cliente_residente.get('/comunidad/espacios', headers=AJAX).get_json()['espacios'] == []
        assert gw.notificaciones.list_for(residente['id'])[0]['tipo'] == 'espacio_eliminado'
