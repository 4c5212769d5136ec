# condoportal/routes/comunidad.py
from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from ..decorators import role_required
from ..forms import AnuncioForm, SolicitudMantenimientoForm, EspacioComunForm
from ..services import comunidad

comunidad_bp = Blueprint('comunidad_bp', __name__)


def _errores_formulario(form):
    return jsonify({'error': 'validacion', 'mensaje': 'Revise los datos del formulario.', 'errores': form.errors}), 400


@comunidad_bp.route('/anuncios', methods=['GET', 'POST'])
@login_required
def anuncios():
    if request.method == 'GET':
        return jsonify({'anuncios': comunidad.list_anuncios(request.args.get('condominio_id', type=int))})
    form = AnuncioForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    anuncio = comunidad.create_anuncio(current_user.id, form.titulo.data, form.contenido.data, form.categoria.data)
    return jsonify({'anuncio': anuncio}), 201


@comunidad_bp.route('/mantenimiento', methods=['GET', 'POST'])
@login_required
def mantenimiento():
    if request.method == 'GET':
        # Los administradores ven todas las solicitudes
        usuario_id = None if current_user.is_admin else current_user.id
        return jsonify({'solicitudes': comunidad.list_solicitudes_mantenimiento(usuario_id)})
    form = SolicitudMantenimientoForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    solicitud = comunidad.create_solicitud_mantenimiento(
        current_user.id, form.titulo.data, form.descripcion.data, form.prioridad.data)
    return jsonify({'solicitud': solicitud}), 201


@comunidad_bp.route('/espacios', methods=['GET', 'POST'])
@login_required
def espacios():
    if request.method == 'GET':
        return jsonify({'espacios': comunidad.list_espacios(request.args.get('condominio_id', type=int))})
    form = EspacioComunForm()
    if not form.validate_on_submit():
        return _errores_formulario(form)
    espacio = comunidad.create_espacio(current_user.id, form.nombre.data, form.descripcion.data, form.capacidad.data)
    return jsonify({'espacio': espacio}), 201


@comunidad_bp.route('/espacios/<int:id>/eliminar', methods=['POST'])
@login_required
@role_required('admin')
def eliminar_espacio(id):
    comunidad.delete_espacio(id, current_user.id)
    return jsonify({'mensaje': 'Espacio común eliminado.'})
