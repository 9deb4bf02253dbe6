from .acquirer import AcquisitionResult, ExecutableAcquirer
from .config import ClientConfig, ServerPathPolicy
from .download import ArtifactDownloader, FetchOutcome
from .path_resolver import PathResolver
from .session import ProcessLaunchInfo, ServerSession

__version__ = "0.1.0"
