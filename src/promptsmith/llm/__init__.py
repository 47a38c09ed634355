"""Generation request execution and structured response recovery."""

from promptsmith.llm.classifier import classify_error, coerce_error
from promptsmith.llm.client import (
    GenerationRequest,
    LLMClient,
    ProviderInfo,
    SharedClientHandle,
    build_client_from_config,
    get_llm_client,
    get_provider_info,
    reset_llm_client,
)
from promptsmith.llm.errors import (
    DEFAULT_RECOVERY_HINTS,
    ClassifiedError,
    ErrorKind,
    JsonRecoveryError,
    ParseFailureDetail,
    ResponseTooLargeError,
)
from promptsmith.llm.json_recovery import extract_first_json_fragment, recover_json
from promptsmith.llm.retry import (
    AttemptOutcome,
    ExecutionResult,
    Fail,
    Retry,
    RetrySettings,
    Success,
    compute_backoff_delay,
    execute_with_retries,
    is_retryable,
)
from promptsmith.llm.structured import (
    RecoveryLimits,
    StructuredRequestOptions,
    StructuredResult,
    execute_llm_with_json_response,
    execute_with_recovery,
)
from promptsmith.llm.validation import validate_prompt

__all__ = [
    "DEFAULT_RECOVERY_HINTS",
    "AttemptOutcome",
    "ClassifiedError",
    "ErrorKind",
    "ExecutionResult",
    "Fail",
    "GenerationRequest",
    "JsonRecoveryError",
    "LLMClient",
    "ParseFailureDetail",
    "ProviderInfo",
    "RecoveryLimits",
    "ResponseTooLargeError",
    "Retry",
    "RetrySettings",
    "SharedClientHandle",
    "StructuredRequestOptions",
    "StructuredResult",
    "Success",
    "build_client_from_config",
    "classify_error",
    "coerce_error",
    "compute_backoff_delay",
    "execute_llm_with_json_response",
    "execute_with_recovery",
    "execute_with_retries",
    "extract_first_json_fragment",
    "get_llm_client",
    "get_provider_info",
    "is_retryable",
    "recover_json",
    "reset_llm_client",
    "validate_prompt",
]
