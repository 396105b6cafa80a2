from tts_module.generation.coordinator import GenerationCoordinator
from tts_module.generation.session import GenerationSession, SessionState

__all__ = ["GenerationCoordinator", "GenerationSession", "SessionState"]
