from .generation import GenerationProvider, ChatModelProvider
from .main_agent import ChatOrchestrator

__all__ = ["GenerationProvider", "ChatModelProvider", "ChatOrchestrator"]
