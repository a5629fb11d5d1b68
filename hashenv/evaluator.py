"""
:mod:`hashenv.evaluator` --- Manifest evaluation
================================================

Drives the components for one manifest. There are two independent
outputs:

 * the *package*: the source is resolved, the inputs are resolved into
   an environment, and the build executor produces (or finds) the
   artifact::

       evaluator = Evaluator.create_from_config(config, logger)
       output = evaluator.build_package(manifest)
       output.key    # 'ox/...'

 * the *devShell*: the devShell inputs are resolved and composed into a
   :class:`~hashenv.core.shell.LiveEnvironment`; nothing is fetched or
   built::

       live_env = evaluator.dev_shell(manifest)

Errors from the components are passed on untouched. The only retry is
of `FetchFailed`, and only if asked for through `fetch_retries`.
"""

from .core.common import FetchFailed
from .core.decorators import retry
from .core.store import DiskStore
from .core.source_cache import SourceResolver
from .core.inputs import (build_environment, MappingEnvironment, HostEnvironment,
                          ChainedEnvironment)
from .core.lock import compute_lock_hash
from .core.build_store import BuildStore
from .core.shell import compose


class Evaluator(object):
    """
    Parameters
    ----------

    store : DiskStore
        Shared by source resolution and builds.

    surrounding_env : object
        Locates inputs by name, see :mod:`hashenv.core.inputs`.

    logger : Logger

    engine, fetchers : (optional)
        Collaborators passed on to the build store and source resolver.

    fetch_retries : int
        How many times a `FetchFailed` is retried, waiting `retry_delay`
        seconds (doubled each time) in between. Zero by default.
    """

    def __init__(self, store, surrounding_env, logger, engine=None, fetchers=None,
                 fetch_timeout=None, build_timeout=None, temp_build_dir=None,
                 keep_build='never', fetch_retries=0, retry_delay=1):
        self.store = store
        self.surrounding_env = surrounding_env
        self.logger = logger
        self.resolver = SourceResolver(store, logger, fetchers, fetch_timeout)
        self.build_store = BuildStore(store, logger, engine, temp_build_dir, build_timeout,
                                      keep_build)
        self.fetch_retries = fetch_retries
        self.retry_delay = retry_delay

    @staticmethod
    def create_from_config(config, logger, engine=None, fetchers=None):
        store = DiskStore.create_from_config(config, logger)
        surrounding_env = ChainedEnvironment(MappingEnvironment(config['inputs']),
                                             HostEnvironment(config['host_prefixes']))
        return Evaluator(store, surrounding_env, logger, engine, fetchers,
                         fetch_timeout=config['fetch_timeout'],
                         build_timeout=config['build_timeout'],
                         temp_build_dir=config['build_temp'],
                         keep_build=config['keep_build'],
                         fetch_retries=config['fetch_retries'],
                         retry_delay=config['retry_delay'])

    def _log_retry(self, tries_remaining, exception, delay):
        self.logger.warning('%s' % exception)
        self.logger.info('Retrying fetch in %s seconds, %d tries remaining' %
                         (delay, tries_remaining))

    def resolve_source(self, manifest, fetch_retries=None):
        if fetch_retries is None:
            fetch_retries = self.fetch_retries
        if fetch_retries == 0:
            return self.resolver.resolve(manifest.source)
        resolve = retry(max_tries=fetch_retries + 1, delay=self.retry_delay,
                        exceptions=(FetchFailed,),
                        hook_retry=self._log_retry)(self.resolver.resolve)
        return resolve(manifest.source)

    def package_environment(self, manifest):
        return build_environment(manifest.inputs.native, manifest.inputs.libraries,
                                 self.surrounding_env, manifest.overrides)

    def lock_hash(self, manifest, fetch_retries=None):
        """Computes the lock hash to pin in the manifest

        The source must still resolve against the manifest's hash.
        """
        source = self.resolve_source(manifest, fetch_retries)
        return compute_lock_hash(self.package_environment(manifest), source.path)

    def build_package(self, manifest, fetch_retries=None):
        """Builds the package, returning a
        :class:`~hashenv.core.build_store.BuildOutput`"""
        source = self.resolve_source(manifest, fetch_retries)
        environment = self.package_environment(manifest)
        return self.build_store.build(source, environment, manifest.lock_hash,
                                      manifest.package, manifest.build,
                                      manifest.passthru_dict)

    def dev_shell_environment(self, manifest):
        # without a devShell section, the shell gets the package's inputs
        if manifest.dev_shell is None:
            return self.package_environment(manifest)
        return build_environment(manifest.dev_shell.inputs, (), self.surrounding_env,
                                 manifest.overrides)

    def dev_shell(self, manifest):
        entry_hook = manifest.dev_shell.entry_hook if manifest.dev_shell is not None else None
        return compose(self.dev_shell_environment(manifest), entry_hook)
