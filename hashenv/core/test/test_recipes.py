from os.path import join as pjoin

from ..recipes import BuildRecipe, get_build_commands, guess_builder
from ..common import InvalidManifest
from .utils import temp_dir, dump, assert_raises


def test_guess_builder():
    with temp_dir() as d:
        with assert_raises(InvalidManifest):
            guess_builder(d)
        dump(pjoin(d, 'Makefile'), 'all:\n')
        assert guess_builder(d) == 'make'
        dump(pjoin(d, 'Cargo.toml'), '')
        assert guess_builder(d) == 'cargo'

def test_cargo_commands():
    with temp_dir() as d:
        commands = get_build_commands(BuildRecipe('cargo'), d)
        assert commands == [['cargo', 'build', '--release', '--locked'],
                            ['cargo', 'test', '--release', '--locked'],
                            ['cargo', 'install', '--path', '.', '--root', '$ARTIFACT', '--locked']]
        commands = get_build_commands(BuildRecipe('cargo', check=False), d)
        assert ['cargo', 'test', '--release', '--locked'] not in commands

def test_make_commands():
    with temp_dir() as d:
        assert get_build_commands(BuildRecipe('make'), d) == [
            ['make'], ['make', 'check'], ['make', 'install', 'PREFIX=$ARTIFACT']]

def test_command_recipe():
    recipe = BuildRecipe('command', commands=[['./configure'], ['make']],
                         check_commands=[['make', 'test']])
    assert recipe.commands == (('./configure',), ('make',))
    assert get_build_commands(recipe, '/nonexisting') == [['./configure'], ['make'],
                                                          ['make', 'test']]
    assert get_build_commands(recipe._replace(check=False), '/nonexisting') == [
        ['./configure'], ['make']]
    with assert_raises(InvalidManifest):
        get_build_commands(BuildRecipe('command'), '/nonexisting')

def test_checks_enabled_by_default():
    assert BuildRecipe().check is True

def test_unknown_builder():
    with assert_raises(InvalidManifest):
        get_build_commands(BuildRecipe('scons'), '/nonexisting')
