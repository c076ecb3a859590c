"""Base AWS client for shared boto3 session management and configuration."""

import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from src.utils.config import get_config_value, get_config_value_str
from src.utils.logging import get_logger

logger = get_logger(__name__)


class AWSBaseClient:
    """Lazily builds a boto3 session and service client.

    Static credentials are used when AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY are set,
    otherwise the default provider chain applies. AWS_ENDPOINT_URL points the
    client at LocalStack.
    """

    def __init__(self, service_name: str, region_name: str | None = None):
        self.service_name = service_name
        self.region_name = region_name or get_config_value("AWS_REGION", "us-east-1")
        self._client: BaseClient | None = None
        self._session: boto3.Session | None = None

    @property
    def session(self) -> boto3.Session:
        if not self._session:
            access_key = get_config_value_str("AWS_ACCESS_KEY_ID")
            secret_key = get_config_value_str("AWS_SECRET_ACCESS_KEY")
            if access_key and secret_key:
                self._session = boto3.Session(
                    region_name=self.region_name,
                    aws_access_key_id=access_key,
                    aws_secret_access_key=secret_key,
                    aws_session_token=get_config_value_str("AWS_SESSION_TOKEN"),
                )
            else:
                self._session = boto3.Session(region_name=self.region_name)
        return self._session

    @property
    def client(self) -> BaseClient:
        if not self._client:
            endpoint_url = get_config_value_str("AWS_ENDPOINT_URL")
            if endpoint_url:
                logger.debug("Using AWS endpoint override", endpoint_url=endpoint_url)
                self._client = self.session.client(self.service_name, endpoint_url=endpoint_url)
            else:
                self._client = self.session.client(self.service_name)
        return self._client

    def handle_aws_error(self, error: Exception, operation: str) -> None:
        """Log an AWS failure with its error code and re-raise it."""
        if isinstance(error, ClientError):
            error_info = error.response.get("Error", {})
            logger.error(
                f"AWS {self.service_name} {operation} failed",
                error_code=error_info.get("Code", "Unknown"),
                error=error_info.get("Message", str(error)),
            )
        elif isinstance(error, BotoCoreError):
            logger.error(f"AWS {self.service_name} {operation} failed", error=str(error))
        else:
            logger.error(
                f"AWS {self.service_name} {operation} failed unexpectedly", error=str(error)
            )

        raise error
