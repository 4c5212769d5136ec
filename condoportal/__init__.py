# condoportal/__init__.py
import os
import logging # Para logging a archivo
from logging.handlers import RotatingFileHandler # Para logging a archivo
import atexit  # Para cerrar el scheduler limpiamente

from flask import Flask, jsonify, session
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_mail import Mail
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from apscheduler.schedulers.background import BackgroundScheduler

# --- Instancias de Extensiones Globales ---
db = SQLAlchemy()
migrate = Migrate()
mail = Mail()
csrf = CSRFProtect()
login_manager = LoginManager()


# --- Configuración de Flask-Login ---
login_manager.login_view = 'auth_bp.login'
login_manager.login_message = "Por favor, inicia sesión para acceder a esta página."
login_manager.login_message_category = "info"

@login_manager.user_loader
def load_user(user_id):
    """Carga el residente desde la copia de sesión y, si no existe, desde la pasarela."""
    from .utils.resident_session import CurrentResident, RESIDENT_SESSION_KEY # Importación local para evitar ciclos
    snapshot = session.get(RESIDENT_SESSION_KEY)
    if snapshot and str(snapshot.get('id')) == str(user_id):
        return CurrentResident(snapshot)

    from .errors import CondoPortalError
    from .gateway import get_gateway
    try:
        usuario = get_gateway().usuarios.get(int(user_id))
    except (CondoPortalError, ValueError) as e:
        logging.getLogger(__name__).warning(f"No se pudo cargar el usuario {user_id}: {e}")
        return None
    return CurrentResident(usuario) if usuario else None

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'no_autenticado', 'mensaje': login_manager.login_message}), 401


# --- Constantes por defecto ---
MAX_RECEIPT_BYTES_DEFAULT = 10 * 1024 * 1024
LOCAL_SNAPSHOT_FILENAME = 'local_storage.json'


def _env_bool(nombre, defecto=False):
    valor = os.environ.get(nombre)
    if valor is None:
        return defecto
    return valor.strip().lower() in ('1', 'true', 'yes', 'si', 'sí', 'on')


# --- Factory de la Aplicación ---
def create_app(test_config=None):
    """Crea y configura la instancia de la aplicación Flask."""
    app = Flask(__name__, instance_relative_config=True)

    # --- Configuración Principal de la Aplicación ---
    app.config['SECRET_KEY'] = os.environ.get('FLASK_SECRET_KEY', 'una-clave-secreta-muy-fuerte-y-diferente-para-produccion')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['DATA_BACKEND'] = os.environ.get('DATA_BACKEND', 'sql')
    app.config['LOCAL_SNAPSHOT_FALLBACK'] = _env_bool('LOCAL_SNAPSHOT_FALLBACK', True)
    if os.environ.get('LOCAL_SNAPSHOT_PATH'):
        app.config['LOCAL_SNAPSHOT_PATH'] = os.environ['LOCAL_SNAPSHOT_PATH']
    app.config['MAX_RECEIPT_BYTES'] = int(os.environ.get('MAX_RECEIPT_BYTES', MAX_RECEIPT_BYTES_DEFAULT))
    app.config['STATUS_RECHECK_SECONDS'] = int(os.environ.get('STATUS_RECHECK_SECONDS', 5))
    app.config['NOTIFICATION_POLL_SECONDS'] = int(os.environ.get('NOTIFICATION_POLL_SECONDS', 30))
    app.config['DELINQUENCY_CRON_HOUR'] = int(os.environ.get('DELINQUENCY_CRON_HOUR', 1))
    app.config['DELINQUENCY_BULK_PREPASS'] = _env_bool('DELINQUENCY_BULK_PREPASS')
    app.config['SCHEDULER_ENABLED'] = _env_bool('SCHEDULER_ENABLED', True)
    app.config['MAIL_NOTIFICATIONS_ENABLED'] = _env_bool('MAIL_NOTIFICATIONS_ENABLED')

    # --- Configuración de Flask-Mail (solo variables de entorno) ---
    app.config['MAIL_SERVER'] = os.environ.get('MAIL_SERVER', 'smtp.office365.com')
    app.config['MAIL_PORT'] = int(os.environ.get('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = _env_bool('MAIL_USE_TLS', True)
    app.config['MAIL_USE_SSL'] = _env_bool('MAIL_USE_SSL')
    app.config['MAIL_USERNAME'] = os.environ.get('MAIL_USERNAME')
    # Contraseña: SIEMPRE desde variable de entorno por seguridad.
    app.config['MAIL_PASSWORD'] = os.environ.get('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.environ.get('MAIL_DEFAULT_SENDER') or app.config.get('MAIL_USERNAME')
    app.config['MAIL_SENDER_DISPLAY_NAME'] = os.environ.get('MAIL_SENDER_DISPLAY_NAME', 'CondoPortal')

    if test_config is not None:
        app.config.update(test_config)

    app.config['WTF_CSRF_SECRET_KEY'] = app.config['SECRET_KEY'] # Reutilizar para CSRF
    # Margen sobre el límite del comprobante para el resto de campos del formulario
    app.config['MAX_CONTENT_LENGTH'] = app.config['MAX_RECEIPT_BYTES'] + 1024 * 1024

    # --- Crear Carpeta de Instancia si no existe ---
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError as e:
        app.logger.error(f"ERROR: No se pudo crear la carpeta de instancia en '{app.instance_path}': {e}")

    # --- Configuración de Base de Datos y Snapshot local (usan app.instance_path) ---
    if 'SQLALCHEMY_DATABASE_URI' not in app.config:
        db_path = os.path.join(app.instance_path, 'condoportal.db')
        app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', f"sqlite:///{db_path}")
    app.config.setdefault('LOCAL_SNAPSHOT_PATH', os.path.join(app.instance_path, LOCAL_SNAPSHOT_FILENAME))

    # --- Inicializar Extensiones ---
    from . import models # Registra los modelos en la db global
    db.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)
    csrf.init_app(app)
    login_manager.init_app(app)

    if not app.config.get('MAIL_PASSWORD') and app.config.get('MAIL_NOTIFICATIONS_ENABLED'):
        app.logger.warning("ADVERTENCIA: MAIL_PASSWORD no está configurada para Flask-Mail (revisa variables de entorno).")

    # --- Configurar Logging a Archivo ---
    if not app.debug and not app.testing:
        log_dir = os.path.join(app.instance_path, 'logs') # Logs dentro de la carpeta de instancia
        try:
            os.makedirs(log_dir, exist_ok=True)
            log_file = os.path.join(log_dir, 'condoportal.log')
            file_handler = RotatingFileHandler(log_file, maxBytes=102400, backupCount=5) # 100KB por log, 5 backups
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO) # INFO, WARNING, ERROR, CRITICAL
            app.logger.addHandler(file_handler)
            app.logger.setLevel(logging.INFO) # Nivel general de la app
            # Los servicios registran con logging.getLogger(__name__)
            package_logger = logging.getLogger(__name__)
            package_logger.addHandler(file_handler)
            package_logger.setLevel(logging.INFO)
            app.logger.info('CondoPortal Iniciado (Logging configurado)')
        except Exception as e_log:
            print(f"ERROR configurando logging a archivo: {e_log}")

    # --- Pasarela de persistencia, errores y eventos ---
    from .gateway import init_gateway
    from .errors import register_error_handlers
    from .utils.resident_session import subscribe_to_status_events

    init_gateway(app)
    register_error_handlers(app)
    subscribe_to_status_events()

    # --- Registrar Blueprints ---
    from .routes.auth import auth_bp
    from .routes.main import main_bp
    from .routes.pagos import pagos_bp
    from .routes.admin import admin_bp
    from .routes.notificaciones import notificaciones_bp
    from .routes.comunidad import comunidad_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(pagos_bp, url_prefix='/pagos')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(notificaciones_bp, url_prefix='/notificaciones')
    app.register_blueprint(comunidad_bp, url_prefix='/comunidad')
    app.register_blueprint(main_bp) # Ruta '/' y control de sesión

    # --- Inicializar APScheduler ---
    # Solo iniciar el scheduler si no estamos en el proceso hijo del reloader
    # o si la app no está en modo debug con reloader.
    # En producción (ej. con Waitress), esto se ejecutará una vez.
    if app.config['SCHEDULER_ENABLED'] and (not app.debug or os.environ.get('WERKZEUG_RUN_MAIN') == 'true'):
        scheduler = BackgroundScheduler(daemon=True)

        from .tasks import run_delinquency_maintenance

        # Pasar el app como argumento para que la tarea tenga acceso al contexto
        scheduler.add_job(
            func=run_delinquency_maintenance,
            args=[app],
            trigger="cron",
            hour=app.config['DELINQUENCY_CRON_HOUR'],
            minute=0,
            id='run_delinquency_maintenance'
        )

        scheduler.start()
        app.logger.info(f"APScheduler iniciado: morosidad programada a las {app.config['DELINQUENCY_CRON_HOUR']}:00.")

        # Registrar función para apagar el scheduler cuando la aplicación se cierra
        atexit.register(lambda: scheduler.shutdown())

    return app
