"""
Build recipes: turn the ``build`` section of a manifest into the
commands handed to the build engine. Commands run in a copy of the
source tree with ``$ARTIFACT`` set to the install location.

``cargo``
    ``cargo build``, ``cargo test`` when checking, then ``cargo install``
    into ``$ARTIFACT``. All in release mode and ``--locked`` so the
    lock file the lock hash covers is the one used.

``make``
    ``make``, ``make check`` when checking, then
    ``make install PREFIX=$ARTIFACT``.

``command``
    The manifest's `commands`, followed by `check_commands` when checking.

Without a ``build`` section the recipe is guessed from the source tree.
"""

import os
from collections import namedtuple
from os.path import join as pjoin

from .common import InvalidManifest

BUILDERS = ('cargo', 'make', 'command')


class BuildRecipe(namedtuple('BuildRecipe', 'builder commands check_commands check')):
    def __new__(cls, builder=None, commands=(), check_commands=(), check=True):
        return super(BuildRecipe, cls).__new__(cls, builder, tuple(tuple(c) for c in commands),
                                               tuple(tuple(c) for c in check_commands), check)


def guess_builder(source_dir):
    if os.path.exists(pjoin(source_dir, 'Cargo.toml')):
        return 'cargo'
    elif os.path.exists(pjoin(source_dir, 'Makefile')):
        return 'make'
    raise InvalidManifest('unable to guess how to build %s; please add a "build" section'
                          % source_dir)


def get_build_commands(recipe, source_dir):
    builder = recipe.builder or guess_builder(source_dir)
    if builder == 'cargo':
        commands = [['cargo', 'build', '--release', '--locked']]
        if recipe.check:
            commands.append(['cargo', 'test', '--release', '--locked'])
        commands.append(['cargo', 'install', '--path', '.', '--root', '$ARTIFACT', '--locked'])
    elif builder == 'make':
        commands = [['make']]
        if recipe.check:
            commands.append(['make', 'check'])
        commands.append(['make', 'install', 'PREFIX=$ARTIFACT'])
    elif builder == 'command':
        if not recipe.commands:
            raise InvalidManifest('the "command" builder requires a list of commands')
        commands = [list(cmd) for cmd in recipe.commands]
        if recipe.check:
            commands.extend(list(cmd) for cmd in recipe.check_commands)
    else:
        raise InvalidManifest('unknown builder "%s", must be one of %s' % (builder, ', '.join(BUILDERS)))
    return commands
