import logging.config
import os
import sys

FORMATS = {
    'verbose': '%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
    'brief': '%(levelname)s: %(message)s',
}


ERROR_LOG_MAX_BYTES = 256 * 1024
ERROR_LOG_BACKUPS = 1


def get_file_handler_opts(filename: str, level: str):
    """Handler config for the error log

    ``/dev/null`` disables it, ``/dev/stderr`` and ``/dev/stdout`` write
    to the process streams. Anything else is a small rotated file, its
    directory is created on demand and the file on the first error only.
    """
    if filename == os.devnull:
        return {
            'class': 'logging.NullHandler',
            'level': level,
        }

    streams = {'/dev/stderr': sys.stderr, '/dev/stdout': sys.stdout}
    if filename in streams:
        return {
            'class': 'logging.StreamHandler',
            'stream': streams[filename],
            'level': level,
            'formatter': 'verbose',
        }

    os.makedirs(os.path.dirname(os.path.abspath(filename)), exist_ok=True)
    return {
        'class': 'logging.handlers.RotatingFileHandler',
        'maxBytes': ERROR_LOG_MAX_BYTES,
        'backupCount': ERROR_LOG_BACKUPS,
        'delay': True,
        'level': level,
        'formatter': 'verbose',
        'filename': filename,
    }


def setup_logging(loglevel=logging.INFO, error_filename: str = None, console_format: str = 'verbose'):
    """Console gets ``loglevel`` and above, the error log gets every ERROR

    ``console_format`` is one of :data:`FORMATS`, the CLI uses ``brief``.
    """
    if error_filename is None:
        error_filename = '/dev/null'

    # fmt: off
    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                name: {'format': fmt} for name, fmt in FORMATS.items()
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': loglevel,
                    'formatter': console_format,
                },
                'error_file': get_file_handler_opts(error_filename, 'ERROR'),
            },
            'loggers': {
                '': {'handlers': ['console', 'error_file'], 'level': 'DEBUG', 'propagate': False},
                # commands and their output are only interesting when debugging
                'stctl.runner': {'level': 'DEBUG' if loglevel in ('DEBUG', logging.DEBUG) else 'WARNING'},
                'PidFile': {'level': 'WARNING'},
            },
        }
    )
    # fmt: on
