"""fieldlogic validation.

Built-in, custom, schema-bundled and async validators for field instances.
Outcomes are kinds plus params; MessageResolver renders them as text.
"""

from fieldlogic.validation.context import ValidatorContext
from fieldlogic.validation.http import HttpValidator
from fieldlogic.validation.messages import DEFAULT_MESSAGES, MessageResolver
from fieldlogic.validation.pipeline import ValidationPipeline, normalize_result
from fieldlogic.validation.types import ValidationOutcome
from fieldlogic.validation.validators import EMAIL_PATTERN, is_empty

__all__ = [
    "DEFAULT_MESSAGES",
    "EMAIL_PATTERN",
    "HttpValidator",
    "MessageResolver",
    "ValidationOutcome",
    "ValidationPipeline",
    "ValidatorContext",
    "is_empty",
    "normalize_result",
]
