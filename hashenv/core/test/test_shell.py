import os
from os.path import join as pjoin

import mock

from ..inputs import build_environment, MappingEnvironment
from ..shell import compose, enter, get_enter_env, LiveEnvironment
from ..common import UnresolvedInput
from .utils import temp_dir, make_prefix, assert_raises


DEV_SHELL_INPUTS = ['rustc', 'cargo', 'gcc', 'clang', 'pkg-config', 'libgit2', 'libssh2',
                    'openssl', 'llvm', 'libclang', 'pam']


def make_surrounding(root):
    return MappingEnvironment(dict((name, make_prefix(root, name, bin_names=[name]))
                                   for name in DEV_SHELL_INPUTS))


def test_compose_ox_entry_hook():
    with temp_dir() as d:
        environment = build_environment(DEV_SHELL_INPUTS, [], make_surrounding(d))
        live_env = compose(environment, entry_hook='ox')
        assert live_env.entry_action == 'ox'
        assert live_env.tools == frozenset(DEV_SHELL_INPUTS)
        path = live_env.variables['PATH'].split(os.path.pathsep)
        assert pjoin(d, 'rustc', 'bin') in path
        assert len(path) == len(DEV_SHELL_INPUTS)

def test_compose_without_hook():
    with temp_dir() as d:
        environment = build_environment(['gcc'], [], make_surrounding(d))
        assert compose(environment).entry_action is None
        assert compose(environment, entry_hook='').entry_action is None

def test_compose_overrides():
    with temp_dir() as d:
        environment = build_environment(['pkg-config'], [], make_surrounding(d),
                                        {'PKG_CONFIG_PATH': '/opt/ssl/lib/pkgconfig',
                                         'EDITOR': 'vi'})
        live_env = compose(environment)
        assert live_env.variables['PKG_CONFIG_PATH'] == '/opt/ssl/lib/pkgconfig'
        assert live_env.variables['EDITOR'] == 'vi'
        # hashable, immutable value
        assert live_env == compose(environment)
        hash(live_env)

def test_compose_leaves_out_build_only_overrides():
    with temp_dir() as d:
        environment = build_environment(['pkg-config'], [], make_surrounding(d),
                                        {'PKG_CONFIG_PATH': '$ARTIFACT/lib/pkgconfig',
                                         'CACHE': '$HOME/.cache', 'EDITOR': 'vi'})
        live_env = compose(environment)
        assert 'CACHE' not in live_env.variables
        assert live_env.variables['PKG_CONFIG_PATH'] == ''
        assert live_env.variables['EDITOR'] == 'vi'

def test_unresolved_input_propagates():
    with temp_dir() as d:
        with assert_raises(UnresolvedInput) as e:
            build_environment(['gcc', 'zig'], [], make_surrounding(d))
        assert e.exc_val.name == 'zig'

def test_enter_env():
    live_env = LiveEnvironment(frozenset(['gcc']),
                               (('PATH', '/in/gcc/bin'), ('PKG_CONFIG_PATH', ''), ('CC', 'gcc')),
                               None)
    env = get_enter_env(live_env, {'PATH': '/usr/bin', 'HOME': '/home/me',
                                   'PKG_CONFIG_PATH': '/usr/lib/pkgconfig'})
    assert env['PATH'] == '/in/gcc/bin:/usr/bin'
    assert env['PKG_CONFIG_PATH'] == '/usr/lib/pkgconfig'
    assert env['CC'] == 'gcc'
    assert env['HOME'] == '/home/me'
    assert env['HASHENV_SHELL'] == '1'

def test_enter_runs_entry_action():
    live_env = LiveEnvironment(frozenset(), (('PATH', '/in/bin'),), 'ox')
    with mock.patch('os.execvpe') as execvpe:
        enter(live_env, base_env={'PATH': '/usr/bin'})
    argv0, argv, env = execvpe.call_args[0]
    assert argv == ['/bin/sh', '-c', 'exec ox']
    assert argv0 == '/bin/sh'
    assert env['PATH'] == '/in/bin:/usr/bin'

def test_enter_starts_shell():
    live_env = LiveEnvironment(frozenset(), (), None)
    with mock.patch('os.execvpe') as execvpe:
        enter(live_env, base_env={'SHELL': '/bin/zsh'})
    assert execvpe.call_args[0][1] == ['/bin/zsh']
    with mock.patch('os.execvpe') as execvpe:
        enter(live_env, shell='/bin/bash', base_env={})
    assert execvpe.call_args[0][1] == ['/bin/bash']
