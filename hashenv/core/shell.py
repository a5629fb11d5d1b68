"""
:mod:`hashenv.core.shell` --- Development environments
======================================================

Composes an interactive environment from resolved inputs. Composing is
purely descriptive: nothing is built, fetched or written to the store,
and :func:`compose` itself raises nothing. Errors (`UnresolvedInput`,
or `InvalidManifest` for a bad override) surface while resolving the
inputs, before it is reached. Overrides referring to ``BUILD``,
``ARTIFACT`` or ``HOME`` are left out of the shell environment.

A :class:`LiveEnvironment` can then be entered with :func:`enter`. If it
has an entry action, entering replaces the current process with
``/bin/sh -c "exec <action>"``; control never returns to a surrounding
shell. Otherwise an interactive shell is started in its place.
"""

import os
from collections import namedtuple

from .inputs import get_inputs_env, apply_overrides


class LiveEnvironment(namedtuple('LiveEnvironment', 'tools env entry_action')):
    """`tools` is the frozenset of visible input names, `env` a sorted tuple
    of ``(key, value)`` pairs, `entry_action` a command string or `None`.
    """

    @property
    def variables(self):
        return dict(self.env)


def compose(environment, entry_hook=None):
    # BUILD, ARTIFACT and HOME only exist while building
    env = apply_overrides(get_inputs_env(environment), environment.overrides, strict=False)
    entry_action = entry_hook if entry_hook else None
    return LiveEnvironment(tools=environment.names,
                           env=tuple(sorted(env.items())),
                           entry_action=entry_action)


def get_enter_env(live_env, base_env=None):
    """The environment of the entered process

    The variables of `live_env` are set on top of `base_env` (by default
    ``os.environ``), except that ``PATH`` and ``PKG_CONFIG_PATH`` are
    prepended to the existing value so host tools stay reachable.
    """
    env = dict(os.environ if base_env is None else base_env)
    for key, value in live_env.env:
        if key in ('PATH', 'PKG_CONFIG_PATH') and env.get(key):
            value = os.path.pathsep.join(x for x in [value, env[key]] if x)
        env[key] = value
    env['HASHENV_SHELL'] = '1'
    return env


def enter(live_env, shell=None, base_env=None):
    """Replace the current process by the environment's entry action or shell

    Does not return.
    """
    env = get_enter_env(live_env, base_env)
    if live_env.entry_action is not None:
        argv = ['/bin/sh', '-c', 'exec %s' % live_env.entry_action]
    else:
        if shell is None:
            shell = env.get('SHELL', '/bin/sh')
        argv = [shell]
    os.execvpe(argv[0], argv, env)
