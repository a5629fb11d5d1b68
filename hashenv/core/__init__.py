from .common import (HashEnvError, InvalidManifest, FetchFailed, HashMismatch, UnresolvedInput,
                     LockHashMismatch, BuildFailed, IllegalStoreError)
from .store import DiskStore
from .source_cache import SourceResolver, VerifiedSource, hash_tree, archive_types
from .inputs import (build_environment, EnvironmentDescriptor, MappingEnvironment,
                     HostEnvironment, ChainedEnvironment)
from .lock import compute_lock_hash
from .build_store import BuildStore, BuildOutput, artifact_key, shorten_artifact_key
from .recipes import BuildRecipe
from .run_job import SubprocessEngine, EngineResult
from .shell import LiveEnvironment, compose, enter
from .hasher import hash_document
