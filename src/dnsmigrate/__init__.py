"""dnsmigrate - staged DNS authority migration orchestrator."""

__version__ = "0.1.0"

from .cli import app  # noqa: E402
from .config import OrchestratorConfig  # noqa: E402

__all__ = ["app", "OrchestratorConfig", "__version__"]
