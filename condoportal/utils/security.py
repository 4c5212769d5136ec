# condoportal/utils/security.py
from werkzeug.security import generate_password_hash, check_password_hash

HASH_METHOD = 'pbkdf2:sha256:600000'
SALT_LENGTH = 16


def hash_password(password):
    """Genera un hash seguro para la contraseña."""
    return generate_password_hash(password, method=HASH_METHOD, salt_length=SALT_LENGTH)


def check_password(password_hash, password):
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def normalize_answer(respuesta):
    # "Santo  Domingo " y "santo domingo" deben valer lo mismo
    return ' '.join((respuesta or '').split()).lower()


def hash_answer(respuesta):
    return generate_password_hash(normalize_answer(respuesta), method=HASH_METHOD, salt_length=SALT_LENGTH)


def verify_answer(respuesta_hash, respuesta):
    if not respuesta_hash:
        return False
    return check_password_hash(respuesta_hash, normalize_answer(respuesta))
