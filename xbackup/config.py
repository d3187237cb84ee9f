import logging
import os
import tempfile

from xbackup.utils.crypto import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)


def env(key, default=None, environ=None):
    """
    Read an environment variable with literal conventions.

    'true'/'(true)' -> True, 'false'/'(false)' -> False,
    'empty'/'(empty)' -> '', 'null'/'(null)' -> None (case-insensitive).
    Missing keys return default.
    """
    environ = os.environ if environ is None else environ

    if key not in environ:
        return default

    value = environ[key]
    lowered = value.strip().lower()

    if lowered in ('true', '(true)'):
        return True
    if lowered in ('false', '(false)'):
        return False
    if lowered in ('empty', '(empty)'):
        return ''
    if lowered in ('null', '(null)'):
        return None

    return value


def _as_list(value):
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [item.strip() for item in str(value).split(',') if item.strip()]


def _as_int(value, default):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _as_bool(value, default):
    if isinstance(value, bool):
        return value
    if value is None or value == '':
        return default
    return str(value).strip().lower() in ('1', 'yes', 'on')


def detect_remotes(environ=None, local_root='/backup-remote'):
    """
    Detect every configured remote from environment variables.

    Supports AWS_* and legacy S3_* variables for S3, B2_* for Backblaze B2.
    An S3 remote without a region is skipped. When nothing is configured a
    local directory remote (LOCAL_ROOT) is returned.

    Returns:
        List of remote dicts, each with a 'driver' key
    """
    environ = os.environ if environ is None else environ
    remotes = []

    def get(key):
        return environ.get(key) or None

    if get('AWS_ACCESS_KEY_ID') and get('AWS_SECRET_ACCESS_KEY') and get('AWS_BUCKET'):
        if get('AWS_DEFAULT_REGION'):
            remotes.append({
                'driver': 's3',
                'key': environ['AWS_ACCESS_KEY_ID'],
                'secret': environ['AWS_SECRET_ACCESS_KEY'],
                'region': environ['AWS_DEFAULT_REGION'],
                'bucket': environ['AWS_BUCKET'],
                'endpoint': get('AWS_ENDPOINT'),
            })
        else:
            logger.warning("AWS S3 remote detected but missing region. Skipping S3 remote.")

    if get('S3_KEY') and get('S3_SECRET') and get('S3_BUCKET'):
        if get('S3_REGION'):
            remotes.append({
                'driver': 's3',
                'key': environ['S3_KEY'],
                'secret': environ['S3_SECRET'],
                'region': environ['S3_REGION'],
                'bucket': environ['S3_BUCKET'],
                'endpoint': get('S3_ENDPOINT'),
            })
        else:
            logger.warning("S3 remote detected but missing region. Skipping S3 remote.")

    if get('B2_KEY') and get('B2_SECRET') and get('B2_BUCKET'):
        remotes.append({
            'driver': 'b2',
            'key': environ['B2_KEY'],
            'secret': environ['B2_SECRET'],
            'bucket': environ['B2_BUCKET'],
            'region': get('B2_REGION') or 'us-west-002',
            'endpoint': get('B2_ENDPOINT'),
        })

    if not remotes:
        remotes.append({
            'driver': 'local',
            'root': get('LOCAL_ROOT') or local_root,
        })

    return remotes


class Config:
    """Base configuration"""

    # Sources
    BACKUP_DIRS = ['/backup']
    ARCHIVE_EXCLUDE = []

    # Working files
    TMP_DIR = os.path.join(tempfile.gettempdir(), 'xbackup')
    STATUS_FILE = None  # defaults to TMP_DIR/last_successful_backup.json

    # Artifact pipeline
    BACKUP_COMPRESSION = 'gzip'
    BACKUP_ENCRYPTION = 'aes'
    BACKUP_COMPRESSION_LEVEL = None
    ENCRYPTION_PASSWORD = None
    CODEC_BACKEND = 'native'
    CHUNK_SIZE = DEFAULT_CHUNK_SIZE

    # Rotation
    ROTATION_ENABLED = True
    ROTATION_KEEP_LATEST = 7

    # Remotes
    REMOTE_PATH = ''
    REMOTE_DRIVER = None
    LOCAL_ROOT = '/backup-remote'

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_DIR = None


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TMP_DIR = os.path.join(DATA_DIR, 'tmp')
    LOCAL_ROOT = os.path.join(DATA_DIR, 'remote')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    LOG_LEVEL = 'DEBUG'
    ENCRYPTION_PASSWORD = 'test-password'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def _from_environ(defaults, environ):
    """Settings overridden by environment variables."""
    settings = {}

    def read(key, env_key=None):
        return env(env_key or key, defaults.get(key), environ)

    settings['BACKUP_DIRS'] = _as_list(read('BACKUP_DIRS')) or defaults['BACKUP_DIRS']
    settings['ARCHIVE_EXCLUDE'] = _as_list(read('ARCHIVE_EXCLUDE'))
    settings['TMP_DIR'] = read('TMP_DIR') or defaults['TMP_DIR']
    settings['STATUS_FILE'] = read('STATUS_FILE') or None

    settings['BACKUP_COMPRESSION'] = (read('BACKUP_COMPRESSION') or 'none').lower()
    settings['BACKUP_ENCRYPTION'] = (read('BACKUP_ENCRYPTION') or 'none').lower()
    settings['BACKUP_COMPRESSION_LEVEL'] = read('BACKUP_COMPRESSION_LEVEL')
    settings['ENCRYPTION_PASSWORD'] = env(
        'ENCRYPTION_PASSWORD', env('BACKUP_PASSWORD', defaults['ENCRYPTION_PASSWORD'], environ), environ
    )
    settings['CODEC_BACKEND'] = (read('CODEC_BACKEND') or 'native').lower()
    settings['CHUNK_SIZE'] = _as_int(read('CHUNK_SIZE', 'CIPHER_CHUNK_SIZE'), defaults['CHUNK_SIZE'])

    settings['ROTATION_ENABLED'] = _as_bool(read('ROTATION_ENABLED'), defaults['ROTATION_ENABLED'])
    settings['ROTATION_KEEP_LATEST'] = _as_int(read('ROTATION_KEEP_LATEST'), defaults['ROTATION_KEEP_LATEST'])

    settings['REMOTE_PATH'] = read('REMOTE_PATH') or ''
    settings['REMOTE_DRIVER'] = read('REMOTE_DRIVER') or None
    settings['LOCAL_ROOT'] = read('LOCAL_ROOT') or defaults['LOCAL_ROOT']

    settings['LOG_LEVEL'] = str(read('LOG_LEVEL') or defaults['LOG_LEVEL']).upper()
    settings['LOG_DIR'] = read('LOG_DIR') or None

    return settings


def load_config(config_name=None, environ=None, **overrides):
    """
    Build the settings dict for a run.

    Args:
        config_name: 'development', 'production', 'testing' or None
                     (XBACKUP_ENV, falling back to 'production')
        environ: Mapping to read instead of os.environ
        **overrides: Final values that win over class defaults and environment

    Returns:
        Dict of upper-case settings, including REMOTES

    Raises:
        ValueError: If config_name is unknown
    """
    environ = os.environ if environ is None else environ

    if config_name is None:
        config_name = environ.get('XBACKUP_ENV', 'production')

    if config_name not in config:
        raise ValueError(f"Unknown configuration: {config_name}. Valid options: {sorted(config)}")

    config_class = config[config_name]
    settings = {key: getattr(config_class, key) for key in dir(config_class) if key.isupper()}
    settings.update(_from_environ(settings, environ))
    settings.update(overrides)

    if not settings.get('STATUS_FILE'):
        settings['STATUS_FILE'] = os.path.join(settings['TMP_DIR'], 'last_successful_backup.json')

    if 'REMOTES' not in overrides:
        settings['REMOTES'] = detect_remotes(environ, settings['LOCAL_ROOT'])

    return settings
