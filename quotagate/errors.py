from typing import Optional

from fastapi import status


class GatewayError(Exception):
    """A classified failure surfaced to API callers as {"code", "message"}."""

    code = "internal_server_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UnknownKey(GatewayError):
    code = "invalid_key"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid key"


class Unauthorized(GatewayError):
    code = "invalid_key"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid key"


class InvalidPartition(GatewayError):
    code = "invalid_partition"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Partition not found or not associated with key"


class PartitionNotExists(GatewayError):
    code = "invalid_partition"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Partition does not exist"


class PartitionExists(GatewayError):
    code = "partition_exists"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Partition already exists"


class PartitionsEmpty(GatewayError):
    code = "partitions_empty"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No partitions specified"


class InvalidRuleSet(GatewayError):
    code = "invalid_rule_set"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid rule set"


class InvalidHeaders(GatewayError):
    code = "invalid_headers"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Content-Length header is required"


class InvalidPath(GatewayError):
    code = "invalid_path"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "File not found"


class QuotaExceeded(GatewayError):
    code = "too_large"
    status_code = 413
    default_message = "File is too large for partition"


class ValidationFailed(GatewayError):
    code = "validation_failed"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class InvalidType(GatewayError):
    code = "invalid_type"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid type"


class InvalidJSON(GatewayError):
    code = "invalid_json"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid JSON"


class InternalError(GatewayError):
    # Backend detail is logged where it happens and never reaches the client.
    def __init__(self) -> None:
        super().__init__(self.default_message)
