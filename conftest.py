"""
Fixtures comunes para las pruebas del portal.

Cada prueba que usa `app` se ejecuta dos veces: contra SQLite en memoria
(backend 'sql') y contra el snapshot local en memoria (backend 'snapshot').
"""
import io
from datetime import date
from decimal import Decimal

import pytest
from werkzeug.datastructures import FileStorage

from condoportal import create_app, db
from condoportal.events import payment_events, status_events
from condoportal.gateway import get_gateway
from condoportal.utils import resident_session
from condoportal.utils.security import hash_password

PASSWORD = 'clave-segura-1'
PASSWORD_HASH = hash_password(PASSWORD)
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


@pytest.fixture(params=['sql', 'snapshot'])
def app(request):
    """Fixture para configurar la aplicación en modo de testing"""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test_secret_key_for_testing_only',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'WTF_CSRF_ENABLED': False,  # Disable CSRF for tests
        'SCHEDULER_ENABLED': False,
        'DATA_BACKEND': request.param,
        'LOCAL_SNAPSHOT_PATH': None,
        'LOCAL_SNAPSHOT_FALLBACK': False,
    })
    with app.app_context():
        db.create_all()
        yield app
        for campana in app.extensions.get('condoportal_bells', {}).values():
            campana.stop()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gw(app):
    return get_gateway()


@pytest.fixture
def hoy():
    return date(2024, 6, 15)


@pytest.fixture
def make_user(gw):
    """Crea usuarios directamente en la pasarela. Admite un id explícito."""
    def _make_user(nombre='Ana Residente', correo=None, rol='residente', estado='Activo', id=None, **extra):
        datos = {
            'nombre': nombre,
            'correo': correo or f"{nombre.split()[0].lower()}{'' if id is None else id}@condominio.com",
            'password_hash': PASSWORD_HASH,
            'rol': rol,
            'estado': estado,
        }
        if id is not None:
            datos['id'] = id
        datos.update(extra)
        return gw.usuarios.create(datos)
    return _make_user


@pytest.fixture
def make_vivienda(gw):
    def _make_vivienda(numero='A-101', usuario_id=None, condominio_id=None):
        vivienda = gw.viviendas.create({'numero_vivienda': numero, 'condominio_id': condominio_id, 'activo': True})
        if usuario_id is not None:
            gw.viviendas.link_resident(usuario_id, vivienda['id'])
        return vivienda
    return _make_vivienda


@pytest.fixture
def make_pago(gw):
    def _make_pago(usuario_id, fecha_vencimiento=None, estado='pendiente', monto='100.00', concepto='Cuota de mantenimiento'):
        return gw.pagos.create({
            'usuario_id': usuario_id,
            'concepto': concepto,
            'monto': Decimal(str(monto)),
            'tipo': 'mantenimiento',
            'estado': estado,
            'fecha_vencimiento': fecha_vencimiento,
        })
    return _make_pago


@pytest.fixture
def admin(make_user):
    return make_user('Admin Condominio', correo='admin@condominio.com', rol='admin')


@pytest.fixture
def residente(make_user, make_vivienda):
    usuario = make_user('Ana Residente', correo='ana@condominio.com')
    make_vivienda('A-101', usuario_id=usuario['id'])
    return usuario


def make_receipt(nombre='comprobante.png', tipo='image/png', contenido=PNG_BYTES):
    return FileStorage(stream=io.BytesIO(contenido), filename=nombre, content_type=tipo)


@pytest.fixture
def login(client):
    """Inicia sesión por la API de autenticación."""
    def _login(correo, password=PASSWORD):
        return client.post('/auth/login', json={'correo': correo, 'password': password})
    return _login


@pytest.fixture(autouse=True)
def _buses_limpios():
    """Restaura las suscripciones de los buses de eventos y las invalidaciones de sesión entre pruebas."""
    resident_session._invalidados.clear()
    suscriptores_pagos = list(payment_events._subscribers)
    suscriptores_estado = list(status_events._subscribers)
    yield
    payment_events._subscribers[:] = suscriptores_pagos
    status_events._subscribers[:] = suscriptores_estado
