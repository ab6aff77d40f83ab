from web2video.core.runtime_config import get_config_store
from web2video.services.retrieval import RetrievalOrchestrator


def get_orchestrator() -> RetrievalOrchestrator:
    """Orchestrator bound to the config snapshot current at request start."""
    return RetrievalOrchestrator(get_config_store().current())
