from tts_module.providers.base import TTSProvider, verify_adherence
from tts_module.providers.registry import PROVIDERS, ProviderRegistry

__all__ = ["PROVIDERS", "ProviderRegistry", "TTSProvider", "verify_adherence"]
