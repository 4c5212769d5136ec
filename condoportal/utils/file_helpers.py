# condoportal/utils/file_helpers.py
import base64
import binascii
import mimetypes
from collections import namedtuple

from werkzeug.utils import secure_filename

from ..errors import ValidationError, StorageError

MAX_RECEIPT_BYTES = 10 * 1024 * 1024  # 10 MiB

ALLOWED_RECEIPT_TYPES = {
    'image/jpeg': 'JPG',
    'image/png': 'PNG',
    'image/gif': 'GIF',
    'image/webp': 'WEBP',
    'application/pdf': 'PDF',
}

ReceiptUpload = namedtuple('ReceiptUpload', ['nombre', 'tipo_mime', 'contenido'])


def _tipo_mime(archivo, nombre):
    tipo = (getattr(archivo, 'mimetype', None) or getattr(archivo, 'content_type', None) or '').split(';')[0].strip().lower()
    if not tipo or tipo == 'application/octet-stream':
        tipo = (mimetypes.guess_type(nombre)[0] or '').lower()
    return tipo


def validate_receipt(archivo, max_bytes=MAX_RECEIPT_BYTES):
    """
    Comprueba el comprobante subido y lo lee en memoria.

    Args:
        archivo (FileStorage): Archivo recibido en el formulario (o None).
        max_bytes (int): Tamaño máximo permitido.

    Returns:
        ReceiptUpload: nombre seguro, tipo MIME y bytes del archivo.

    Raises:
        ValidationError: si falta, el tipo no es imagen/PDF o supera el tamaño máximo.
    """
    if archivo is None or not getattr(archivo, 'filename', None):
        raise ValidationError('El comprobante de pago es obligatorio.')

    nombre = secure_filename(archivo.filename) or 'comprobante'
    tipo = _tipo_mime(archivo, archivo.filename)
    if tipo not in ALLOWED_RECEIPT_TYPES:
        permitidos = ', '.join(sorted(set(ALLOWED_RECEIPT_TYPES.values())))
        raise ValidationError(f"Tipo de archivo no permitido. Formatos aceptados: {permitidos}.")

    stream = getattr(archivo, 'stream', archivo)
    if hasattr(stream, 'seek'):
        stream.seek(0)
    contenido = stream.read(max_bytes + 1)
    if len(contenido) > max_bytes:
        limite_mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"El comprobante supera el tamaño máximo de {limite_mb:g} MB.")
    if not contenido:
        raise ValidationError('El comprobante está vacío.')

    return ReceiptUpload(nombre=nombre, tipo_mime=tipo, contenido=contenido)


def encode_data_url(tipo_mime, contenido):
    return f"data:{tipo_mime};base64,{base64.b64encode(contenido).decode('ascii')}"


def decode_data_url(url):
    """
    Devuelve (tipo_mime, bytes) de una data URL en base64.

    Raises:
        StorageError: si el contenido almacenado no es legible.
    """
    if not url or not url.startswith('data:') or ';base64,' not in url:
        raise StorageError('El comprobante almacenado no tiene un formato legible.')
    cabecera, datos = url.split(',', 1)
    tipo_mime = cabecera[len('data:'):].split(';')[0] or 'application/octet-stream'
    try:
        return tipo_mime, base64.b64decode(datos, validate=True)
    except (binascii.Error, ValueError) as e:
        raise StorageError(f'El comprobante almacenado está dañado: {e}') from e
