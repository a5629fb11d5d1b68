"""Command-line tools for inspecting the store
"""

from .main import register_subcommand
from ..core.store import split_store_key


class Ls(object):
    """
    List the contents of the store

    Prints the keys of the verified source trees and of the built
    artifacts, with their locations.
    """

    @staticmethod
    def setup(ap):
        ap.add_argument('--sources', action='store_true', help='Only list source trees')
        ap.add_argument('--artifacts', action='store_true', help='Only list artifacts')

    @staticmethod
    def run(ctx, args):
        store = ctx.open_store()
        show_all = not (args.sources or args.artifacts)
        if show_all or args.sources:
            for key in store.tree_keys():
                ctx.out_stream.write('%s %s\n' % (key, store.lookup_tree(key)))
        if show_all or args.artifacts:
            for key in store.artifact_keys():
                ctx.out_stream.write('%s %s\n' % (key, store.lookup_artifact(key)))

register_subcommand(Ls)


class Rm(object):
    """
    Remove an artifact or source tree from the store

    Removing an artifact forces the next build with the same key to run
    the build again.
    """

    @staticmethod
    def setup(ap):
        ap.add_argument('key', help='Artifact key (name/hash) or source key (algo/hash)')

    @staticmethod
    def run(ctx, args):
        try:
            split_store_key(args.key)
        except ValueError:
            ctx.error('Not a store key: %s' % args.key)
        store = ctx.open_store()
        if store.lookup_artifact(args.key) is not None:
            store.delete_artifact(args.key)
        elif store.lookup_tree(args.key) is not None:
            store.delete_tree(args.key)
        else:
            ctx.logger.error('%s not found in store' % args.key)
            return 1

register_subcommand(Rm)
