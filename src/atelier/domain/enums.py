"""Enumerations used across the Atelier domain layer."""

from __future__ import annotations

from enum import StrEnum


class ArtifactKind(StrEnum):
    """Families of artifacts the remote generators can produce."""

    IMAGE = "image"
    MATERIAL = "material"
    ANIMATION = "animation"
    AUDIO = "audio"


class RefinementMode(StrEnum):
    """Generation flavour requested from the remote service."""

    GENERATION = "generation"
    UPSCALE = "upscale"
    PBR = "pbr"


class JobStatus(StrEnum):
    """Remote processing state of a single job."""

    NONE = "none"
    WAITING = "waiting"
    USER_THROTTLED = "user_throttled"
    WORKING = "working"
    DONE = "done"
    FAILED = "failed"


class ResultErrorCode(StrEnum):
    """Error enumeration reported by the remote service and by local pre-flight checks."""

    UNKNOWN = "unknown"
    NONE = "none"
    SDK_VALIDATION_FAILED = "sdk_validation_failed"
    SDK_TIMEOUT = "sdk_timeout"
    CANCELED_BY_SDK_USER = "canceled_by_sdk_user"
    INVALID_JOB_ID = "invalid_job_id"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SERVER_VALIDATION_FAILED = "server_validation_failed"
    UNSUPPORTED_MODEL_OPERATION = "unsupported_model_operation"
    UNKNOWN_MODEL = "unknown_model"
    USER_TOO_MANY_CONCURRENT_GENERATIONS = "user_too_many_concurrent_generations"
    SERVER_TIMEOUT = "server_timeout"
    AI_GENERATOR_IS_DISABLED_FOR_ORGANIZATION = "ai_generator_is_disabled_for_organization"
    AI_ASSISTANT_IS_DISABLED_FOR_ORGANIZATION = "ai_assistant_is_disabled_for_organization"
    TERMS_OF_SERVICE_NOT_ACCEPTED = "terms_of_service_not_accepted"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    USER_NOT_IN_ORGANIZATION = "user_not_in_organization"
    USER_UNAUTHORIZED = "user_unauthorized"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    API_NO_LONGER_SUPPORTED = "api_no_longer_supported"
    MODEL_PARAMETER_VALIDATION_FAILED = "model_parameter_validation_failed"
    UNAVAILABLE_FOR_LEGAL_REASONS = "unavailable_for_legal_reasons"

    @classmethod
    def parse(cls, value: object) -> ResultErrorCode:
        """Map an arbitrary wire value onto the enumeration, defaulting to ``UNKNOWN``."""

        if value is None:
            return cls.NONE
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class BatchStatus(StrEnum):
    """Terminal state reached by a retry run."""

    DONE = "done"
    FAILED = "failed"
