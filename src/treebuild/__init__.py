"""treebuild - recursive, configuration-driven build orchestrator.

Builds a source tree whose directories each declare, in a Kbuild-style
descriptor, which objects and subdirectories participate in the build under
the current .config. Every directory produces one built-in.a thin archive
holding its own objects and its children's archives.
"""

__version__ = "0.3.0"

from .build import BuildParams, BuildResult, RecursiveBuildDriver, TreeBuilder
from .config import BuildConfig, load_config
from .errors import (
    AggregationError,
    BuildCancelledError,
    CompileError,
    ConfigurationError,
    DescriptorError,
    ResolutionError,
    TreeBuildError,
)

__all__ = [
    "AggregationError",
    "BuildCancelledError",
    "BuildConfig",
    "BuildParams",
    "BuildResult",
    "CompileError",
    "ConfigurationError",
    "DescriptorError",
    "RecursiveBuildDriver",
    "ResolutionError",
    "TreeBuildError",
    "TreeBuilder",
    "__version__",
    "load_config",
]
