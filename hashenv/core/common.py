import os
import contextlib


class HashEnvError(Exception):
    """Base class of all errors reported by an evaluation"""


class InvalidManifest(HashEnvError, ValueError):
    pass


class FetchFailed(HashEnvError):
    pass


class HashMismatch(HashEnvError):
    def __init__(self, msg, expected, got):
        HashEnvError.__init__(self, msg)
        self.expected = expected
        self.got = got


class UnresolvedInput(HashEnvError):
    def __init__(self, name):
        HashEnvError.__init__(self, 'unable to resolve input "%s"' % name)
        self.name = name


class LockHashMismatch(HashEnvError):
    def __init__(self, declared, computed):
        HashEnvError.__init__(self, 'declared lock hash %s does not match computed %s; '
                              'the manifest is stale' % (declared, computed))
        self.declared = declared
        self.computed = computed


class BuildFailed(HashEnvError):
    """The build engine reported failure

    `returncode` and `diagnostics` are what the engine reported, untouched.
    """
    def __init__(self, msg, returncode, diagnostics, build_dir=None):
        HashEnvError.__init__(self, msg)
        self.returncode = returncode
        self.diagnostics = diagnostics
        self.build_dir = build_dir


class IllegalStoreError(HashEnvError):
    pass


json_formatting_options = dict(indent=2, separators=(', ', ' : '),
                               sort_keys=True, allow_nan=False)

SHORT_ARTIFACT_ID_LEN = 12

@contextlib.contextmanager
def working_directory(path):
    old = os.getcwd()
    try:
        os.chdir(path)
        yield
    finally:
        os.chdir(old)
