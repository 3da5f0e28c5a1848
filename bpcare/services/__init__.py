"""
Core services for the application.

This package contains the advice pipeline (cache, rate limiter, retry
controller, inference client, generator), report building and the tracker
service that ties them to storage and email delivery.
"""

from .advice_cache import AdviceCache, fingerprint
from .advice_generator import FALLBACK_ADVICE, AdviceGenerator
from .inference import InferenceClient, InferenceConfig, PydanticAIInferenceClient
from .rate_limiter import InferenceRateLimiter
from .retry import RetryController, RetryPolicy

__all__ = [
    "AdviceCache",
    "AdviceGenerator",
    "FALLBACK_ADVICE",
    "InferenceClient",
    "InferenceConfig",
    "InferenceRateLimiter",
    "PydanticAIInferenceClient",
    "RetryController",
    "RetryPolicy",
    "fingerprint",
]
