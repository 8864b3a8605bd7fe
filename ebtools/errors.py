"""
Error taxonomy for the deployment tools.
"""

from enum import Enum
from typing import Optional, Union

from botocore.exceptions import ClientError


class CommonErrorCode(Enum):
    """Failures shared by every command."""
    DEFAULTS_PARSE_FAIL = "DefaultsParseFail"
    COMMAND_LINE_PARSE_ERROR = "CommandLineParseError"
    MISSING_REQUIRED_PARAMETER = "MissingRequiredParameter"
    NO_PROJECT_FOUND = "NoProjectFound"
    DOTNET_PUBLISH_FAILED = "DotnetPublishFailed"
    INVALID_MANIFEST = "InvalidManifest"
    RUNTIME_CONFIG_NOT_FOUND = "RuntimeConfigNotFound"
    FILE_ACCESS_ERROR = "FileAccessError"
    INVALID_OPTION_VALUE = "InvalidOptionValue"


class EBCode(Enum):
    """Elastic Beanstalk phase that failed."""
    ENSURE_BUCKET_EXISTS_ERROR = "EnsureBucketExistsError"
    FAILED_TO_UPLOAD_BUNDLE = "FailedToUploadBundle"
    FAILED_TO_FIND_ENVIRONMENT = "FailedToFindEnvironment"
    FAILED_ENVIRONMENT_UPDATE = "FailedEnvironmentUpdate"
    FAILED_CREATE_APPLICATION = "FailedCreateApplication"
    FAILED_CREATE_APPLICATION_VERSION = "FailedCreateApplicationVersion"
    FAILED_TO_UPDATE_TAGS = "FailedToUpdateTags"
    FAILED_TO_DELETE_ENVIRONMENT = "FailedToDeleteEnvironment"
    FAILED_TO_UPDATE_ENVIRONMENT = "FailedToUpdateEnvironment"
    FAILED_TO_CREATE_ENVIRONMENT = "FailedToCreateEnvironment"
    FAILED_TO_STABILIZE_ENVIRONMENT = "FailedToStabilizeEnvironment"


class ToolsError(Exception):
    """Base error surfaced to the CLI boundary."""

    def __init__(
        self,
        message: str,
        code: Union[CommonErrorCode, EBCode],
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.cause = cause
        self.service_code = None

        if isinstance(cause, ClientError):
            error = cause.response.get("Error", {})
            status = cause.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            self.service_code = f"{error.get('Code')}-{status}"

    def __str__(self) -> str:
        return self.message


class ElasticBeanstalkError(ToolsError):
    """Failure in one of the Elastic Beanstalk deployment phases."""

    def __init__(self, message: str, code: EBCode, cause: Optional[BaseException] = None):
        super().__init__(message, code, cause)
