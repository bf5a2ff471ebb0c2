"""HTTP clients for generation providers."""

from cutroom.providers.cancellation import CancellationToken, guarded
from cutroom.providers.retry import (
    FIELD_REJECTION_KEYWORDS,
    RetryPolicy,
    fal_policy,
    is_fal_retryable,
    is_field_rejection,
    is_transient_error,
    openrouter_policy,
    replicate_policy,
)
from cutroom.providers.base import ProviderClient, decode_data_url
from cutroom.providers.openrouter import OpenRouterClient, extract_image
from cutroom.providers.fal import (
    FalClient,
    nearest_permitted_duration,
    permitted_durations,
)
from cutroom.providers.replicate import (
    ReplicateClient,
    extract_output_url,
)
from cutroom.providers.dispatch import ProviderDispatcher

__all__ = [
    # Cancellation
    "CancellationToken",
    "guarded",
    # Retry
    "FIELD_REJECTION_KEYWORDS",
    "RetryPolicy",
    "fal_policy",
    "is_fal_retryable",
    "is_field_rejection",
    "is_transient_error",
    "openrouter_policy",
    "replicate_policy",
    # Clients
    "ProviderClient",
    "OpenRouterClient",
    "extract_image",
    "FalClient",
    "nearest_permitted_duration",
    "permitted_durations",
    "ReplicateClient",
    "decode_data_url",
    "extract_output_url",
    "ProviderDispatcher",
]
