from .gemini_client import GeminiClient, PromptEnhancementError
from .prodigi_client import PRINT_PRODUCTS, PrintServiceError, PrintServiceNotConfigured, ProdigiClient
from .wavespeed_client import (
    ImageGenerationError,
    ImageGenerationNotConfigured,
    ImageGenerationRateLimit,
    ImageGenerationTimeout,
    WavespeedClient,
)

__all__ = [
    "GeminiClient",
    "PromptEnhancementError",
    "PRINT_PRODUCTS",
    "PrintServiceError",
    "PrintServiceNotConfigured",
    "ProdigiClient",
    "ImageGenerationError",
    "ImageGenerationNotConfigured",
    "ImageGenerationRateLimit",
    "ImageGenerationTimeout",
    "WavespeedClient",
]
