"""Main entry-point

Other ``hashenv.cli.*`` modules register their sub-commands using the
:func:`register_subcommand` function. A sub-command is a class with

 - a docstring, whose first line is the one-liner of the command
   overview and the whole the description of ``hashenv help <command>``;
 - a static method ``setup(ap)`` adding arguments to its parser;
 - a static method ``run(ctx, args)`` returning the exit status, or
   `None` for 0. `ctx` is a :class:`HashEnvCommandContext`.

Errors are reported by :func:`help_on_exceptions`.
"""

import sys
import os
import errno
import textwrap
import traceback
import argparse
import logging

from ..core.common import HashEnvError, BuildFailed
from ..core.store import DiskStore
from ..evaluator import Evaluator
from ..formats.config import (load_config_file, default_config, DEFAULT_CONFIG_FILENAME_REPR,
                              DEFAULT_CONFIG_FILENAME)
from ..formats.marked_yaml import ValidationError
from ..util.logger_setup import set_log_level, configure_logging, has_error_occurred, getLogger

logger = getLogger()

ERROR_STATUS = 127

_subcommands = {}


def register_subcommand(cls, command=None):
    """Register `cls` as the sub-command `command`

    The name defaults to ``cls.command`` and then to the lower-cased class
    name.
    """
    if command is None:
        command = getattr(cls, 'command', cls.__name__.lower())
    _subcommands[command] = cls
    return cls


class HashEnvCommandContext(object):
    """What a sub-command gets to work with besides its arguments

    The configuration is only loaded when asked for, so that ``help``
    works without one.
    """
    def __init__(self, argparser, subcommand_parsers, out_stream, config_filename, env, logger):
        self.argparser = argparser
        self.subcommand_parsers = subcommand_parsers
        self.out_stream = out_stream
        self.env = env
        self.logger = logger
        self.config_filename = config_filename
        self._config = None

    def get_config(self):
        if self._config is None:
            try:
                self._config = load_config_file(self.config_filename, self.logger)
            except IOError as e:
                if e.errno != errno.ENOENT:
                    raise
                self.logger.info('Unable to find %s, using defaults' % self.config_filename)
                self._config = default_config()
        return self._config

    def open_store(self):
        return DiskStore.create_from_config(self.get_config(), self.logger)

    def create_evaluator(self):
        return Evaluator.create_from_config(self.get_config(), self.logger)

    def error(self, msg):
        """Usage error; exits with status 2"""
        self.argparser.error(msg)


def _parse_docstring(doc):
    doc = textwrap.dedent(doc).strip()
    help = doc.splitlines()[0]
    # light ReST to terminal
    description = doc.replace('::\n', ':\n').replace('``', '"')
    return help, description


def make_parser(env):
    """Returns the top-level parser and a dict of the sub-command parsers"""
    parser = argparse.ArgumentParser(
        description='Builds packages and development shells from hashenv manifests',
        formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--config', default=env.get('HASHENV_CONFIG', DEFAULT_CONFIG_FILENAME),
                        help='Location of hashenv configuration file (default: $HASHENV_CONFIG '
                        'or %s)' % DEFAULT_CONFIG_FILENAME_REPR)
    parser.add_argument('--log', default=None,
                        help='One of [DEBUG, INFO, ERROR, WARNING, CRITICAL]')

    group = parser.add_subparsers(title='subcommands')
    subcommand_parsers = {}
    for name, cls in sorted(_subcommands.items()):
        help, description = _parse_docstring(cls.__doc__)
        ap = group.add_parser(name=name, help=help, description=description,
                              formatter_class=argparse.RawDescriptionHelpFormatter)
        cls.setup(ap)
        ap.add_argument('-v', '--verbose', action='store_true', help='More verbose output')
        ap.set_defaults(subcommand_handler=cls.run, subcommand=name)
        subcommand_parsers[name] = ap
    return parser, subcommand_parsers


def command_line_entry_point(unparsed_argv, env, secondary=False):
    """
    The ``hashenv`` command; returns the exit status

    `unparsed_argv` includes the program name. With `secondary` set,
    logging is left as configured by the caller (e.g. a test).
    """
    parser, subcommand_parsers = make_parser(env)
    if len(unparsed_argv) == 1:
        parser.print_help()
        return 1
    args = parser.parse_args(unparsed_argv[1:])

    if not secondary:
        configure_logging(args.log)
        if args.verbose:
            if args.log is not None:
                logger.warning('-v overrides --log to INFO')
            set_log_level('INFO')

    ctx = HashEnvCommandContext(parser, subcommand_parsers, sys.stdout, args.config, env, logger)
    retcode = args.subcommand_handler(ctx, args)
    return 0 if retcode is None else retcode


def report_exception(e):
    """Logs `e` for the user of the command line"""
    if isinstance(e, KeyboardInterrupt):
        logger.info('Interrupted')
    elif isinstance(e, ValidationError):
        logger.critical(str(e))
    elif isinstance(e, HashEnvError):
        logger.critical('%s: %s' % (type(e).__name__, e))
        if isinstance(e, BuildFailed):
            if e.build_dir is not None:
                logger.critical('Build directory kept at %s' % e.build_dir)
            sys.stderr.write(e.diagnostics)
    elif isinstance(e, EnvironmentError):
        logger.critical(str(e))
    elif not has_error_occurred():
        logger.critical('Uncaught exception:')
        for line in traceback.format_exc().splitlines():
            logger.critical(line)
        text = textwrap.fill('This exception has not been translated to a human-friendly '
                             'error message; please report it together with this stack trace.',
                             width=78)
        for line in text.splitlines():
            logger.critical(line)


def help_on_exceptions(func, *args, **kw):
    """Calls `func` and returns its exit status, reporting exceptions

    Any exception makes the status 127. If the ``DEBUG`` environment
    variable is non-empty, or the log level is DEBUG, exceptions are
    raised instead.
    """
    if 'DEBUG' in os.environ:
        debug = len(os.environ['DEBUG']) > 0
    else:
        debug = logging.getLogger().getEffectiveLevel() <= logging.DEBUG
    try:
        return func(*args, **kw)
    except SystemExit:
        raise
    except (KeyboardInterrupt, Exception) as e:
        if debug:
            raise
        report_exception(e)
        return ERROR_STATUS


@register_subcommand
class Help(object):
    """
    Displays help about sub-commands
    """
    @staticmethod
    def setup(ap):
        ap.add_argument('command', help='The command to print help for', nargs='?')

    @staticmethod
    def run(ctx, args):
        if args.command is None:
            ctx.argparser.print_help()
        elif args.command not in ctx.subcommand_parsers:
            ctx.error('Unknown sub-command: %s' % args.command)
        else:
            ctx.subcommand_parsers[args.command].print_help()
