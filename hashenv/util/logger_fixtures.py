"""
Capture of log records in tests

Pass the adapter returned by :class:`log_capture` wherever a logger is
expected, then check what was logged::

    with log_capture() as log:
        resolver.logger = log
        resolver.resolve(locator)
    log.assertLogged('^ERROR:source fetched from .* has hash')

Records are rendered as ``LEVEL:message``.
"""

import re
import logging


class RecordingHandler(logging.Handler):
    def __init__(self):
        logging.Handler.__init__(self, logging.DEBUG)
        self.records = []
        self.setFormatter(logging.Formatter('%(levelname)s:%(message)s'))

    def emit(self, record):
        self.records.append(record)


class CapturingLogger(logging.LoggerAdapter):
    """
    Logger adapter giving access to the records captured so far
    """
    def __init__(self, logger, handler):
        logging.LoggerAdapter.__init__(self, logger, {'pkg': 'test'})
        self.handler = handler

    @property
    def lines(self):
        return tuple(self.handler.format(r) for r in self.handler.records)

    @property
    def messages(self):
        return tuple(r.getMessage() for r in self.handler.records)

    def assertLogged(self, search_pattern):
        """Fail unless some line matches the regex `search_pattern`"""
        assert any(re.search(search_pattern, line) for line in self.lines), \
            'nothing logged matches %r; got %r' % (search_pattern, self.lines)


class log_capture(object):
    """
    Context manager routing logger `name` (the root logger by default)
    into memory, at DEBUG level, instead of its usual handlers
    """
    def __init__(self, name=None):
        self.logger = logging.getLogger(name)
        self.handler = RecordingHandler()

    def __enter__(self):
        self.saved = (self.logger.handlers, self.logger.level)
        self.logger.handlers = [self.handler]
        self.logger.setLevel(logging.DEBUG)
        return CapturingLogger(self.logger, self.handler)

    def __exit__(self, exc_type, exc_value, traceback):
        self.logger.handlers, level = self.saved
        self.logger.setLevel(level)
