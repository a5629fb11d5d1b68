"""Command-line tools for evaluating manifests
"""

import shlex

from .main import register_subcommand
from ..formats.manifest import load_manifest
from ..core.shell import enter
from ..core.source_cache import parse_expected_hash
from ..core.common import InvalidManifest


def _add_manifest_args(ap):
    ap.add_argument('manifest', help='Manifest file (YAML or JSON)')
    ap.add_argument('--fetch-retries', type=int, default=None,
                    help='Retry failed fetches this many times (default: from configuration)')


class Build(object):
    """
    Build the package described by a manifest

    The source is fetched and verified, the inputs located and the
    package built into the store, unless an artifact with the same key
    is present already. Prints the artifact key and its location::

        $ hashenv build ox.yaml
        ox/4niostz3iktlg67najtxuwwgss5vl6k4 /home/user/.hashenv/art/ox/4niostz3iktl

    """

    @staticmethod
    def setup(ap):
        _add_manifest_args(ap)

    @staticmethod
    def run(ctx, args):
        manifest = load_manifest(args.manifest)
        output = ctx.create_evaluator().build_package(manifest, args.fetch_retries)
        ctx.out_stream.write('%s %s\n' % (output.key, output.path))

register_subcommand(Build)


class Shell(object):
    """
    Enter the development shell described by a manifest

    The shell gets the inputs of the ``devShell`` section (or of the
    package if there is none) and the variable overrides. If the
    section has an ``entryHook``, it replaces the shell.

    With ``--print``, the environment is printed as shell assignments
    instead of entered.
    """

    @staticmethod
    def setup(ap):
        ap.add_argument('manifest', help='Manifest file (YAML or JSON)')
        ap.add_argument('--print', action='store_true', dest='print_env',
                        help='Print the environment rather than entering it')

    @staticmethod
    def run(ctx, args):
        manifest = load_manifest(args.manifest)
        live_env = ctx.create_evaluator().dev_shell(manifest)
        if args.print_env:
            for key, value in live_env.env:
                ctx.out_stream.write('export %s=%s\n' % (key, shlex.quote(value)))
            if live_env.entry_action is not None:
                ctx.out_stream.write('exec %s\n' % live_env.entry_action)
        else:
            ctx.out_stream.flush()
            enter(live_env, base_env=ctx.env)

register_subcommand(Shell)


class LockHash(object):
    """
    Compute the lock hash of a manifest

    The source must resolve. Prints the lock hash to pin as the
    manifest's ``lockHash``, and returns an error code if it differs
    from the one currently declared.
    """

    command = 'lock-hash'

    @staticmethod
    def setup(ap):
        _add_manifest_args(ap)

    @staticmethod
    def run(ctx, args):
        manifest = load_manifest(args.manifest)
        lock_hash = ctx.create_evaluator().lock_hash(manifest, args.fetch_retries)
        ctx.out_stream.write('%s\n' % lock_hash)
        if lock_hash != manifest.lock_hash:
            ctx.logger.warning('the manifest declares %s' % manifest.lock_hash)
            return 1

register_subcommand(LockHash)


class HashSource(object):
    """
    Fetch the source of a manifest and print its hash

    Nothing is verified or stored. The hash algorithm is the one of the
    manifest's source hash, sha256 if it can not be told.
    """

    command = 'hash-source'

    @staticmethod
    def setup(ap):
        ap.add_argument('manifest', help='Manifest file (YAML or JSON)')

    @staticmethod
    def run(ctx, args):
        manifest = load_manifest(args.manifest)
        try:
            algo, _ = parse_expected_hash(manifest.source)
        except InvalidManifest:
            algo = manifest.source.hash_algo or 'sha256'
        evaluator = ctx.create_evaluator()
        digest = evaluator.resolver.hash_source(manifest.source, algo)
        ctx.out_stream.write('%s\n' % digest)

register_subcommand(HashSource)
