"""
Logging for hashenv

Two loggers are in use. The root logger carries the messages of the
evaluation itself: fetches, cache hits, lock hash checks and errors.
With the default configuration they go to stderr as::

    [INFO] Fetching github:pagedMov/ox@v0.1.1-alpha

The ``package`` logger carries the progress of a build and the output
of the build engine, tagged with the package name. Use
``getLogger('package', 'ox')`` to get it with the tag filled in; its
records are shown as::

    [ox] running cargo build
    [ox|ERROR] command failed (code=101)

While a package is built, everything logged on the ``package`` logger
is also written to the build log, whatever the configured level; see
:class:`log_to_file`.
"""

import os
import logging
import threading
import logging.config

import yaml

LOG_LEVELS = ('CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG')

DEFAULT_LOGGING_CONFIG = os.path.join(os.path.dirname(__file__), 'logging_config.yaml')

_error_count = 0


def has_error_occurred():
    """Whether an error has been printed since logging was configured

    The command line uses this to avoid burying an error message that
    was already shown under a stack trace.
    """
    return _error_count > 0


class HashEnvFormatter(logging.Formatter):
    """
    Formatter choosing the format by level

    `fmt` is the default; the keyword arguments, named after the levels
    in lower case, override it for single levels.
    """
    def __init__(self, fmt, **level_fmts):
        logging.Formatter.__init__(self, fmt)
        self._level_formatters = dict(
            (getattr(logging, level.upper()), logging.Formatter(level_fmt))
            for level, level_fmt in level_fmts.items() if level_fmt)

    def format(self, record):
        if record.levelno >= logging.ERROR:
            global _error_count
            _error_count += 1
        formatter = self._level_formatters.get(record.levelno)
        if formatter is None:
            return logging.Formatter.format(self, record)
        return formatter.format(record)


def _parse_level(level):
    if isinstance(level, int):
        return level
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ValueError('log level must be one of %s, not %r' % (', '.join(LOG_LEVELS), level))
    return getattr(logging, level.upper())


def configure_logging(config=None):
    """
    Configure the root and ``package`` loggers

    `config` is a level name (``'INFO'`` etc.), the name of a YAML file
    for :func:`logging.config.dictConfig`, or `None` for the defaults of
    ``logging_config.yaml``. A configuration file must define the
    ``package`` logger.
    """
    global _error_count
    is_level = config is not None and config.upper() in LOG_LEVELS
    filename = DEFAULT_LOGGING_CONFIG if config is None or is_level else config
    with open(filename) as f:
        logging.config.dictConfig(yaml.safe_load(f))
    _error_count = 0
    if is_level:
        set_log_level(config)


def set_log_level(level):
    """
    Set the level of messages shown on the terminal

    Applies to the root logger and the terminal handler of the
    ``package`` logger; build logs are not affected.
    """
    level = _parse_level(level)
    logging.getLogger().setLevel(level)
    for handler in logging.getLogger('package').handlers:
        if handler.name == 'package_handler':
            handler.setLevel(level)


def getLogger(name=None, pkg=None):
    """
    Like ``logging.getLogger``, but ``getLogger('package', pkg)`` returns
    an adapter tagging every record with the package name `pkg`.
    """
    logger = logging.getLogger(name)
    if name == 'package':
        return logging.LoggerAdapter(logger, {'pkg': pkg})
    return logger


class ThreadFilter(logging.Filter):
    """Passes only records logged by the thread with identifier `ident`"""

    def __init__(self, ident):
        logging.Filter.__init__(self)
        self.ident = ident

    def filter(self, record):
        return record.thread == self.ident


class log_to_file(object):
    """
    Context manager copying the records of logger `name` to `filename`

    Only records logged by the entering thread are copied, so that builds
    running in parallel each get their own log. The file receives DEBUG
    and up no matter the terminal level; the logger itself must let DEBUG
    through, as the ``package`` logger of ``logging_config.yaml`` does.
    """
    file_format = '%(asctime)s %(levelname)s: %(message)s'
    date_format = '%Y/%m/%d %H:%M:%S'

    def __init__(self, name, filename):
        self.logger = logging.getLogger(name)
        self.handler = logging.FileHandler(filename)
        self.handler.setLevel(logging.DEBUG)
        self.handler.setFormatter(logging.Formatter(self.file_format, self.date_format))

    def __enter__(self):
        self.handler.addFilter(ThreadFilter(threading.get_ident()))
        self.logger.addHandler(self.handler)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.logger.removeHandler(self.handler)
        self.handler.close()
