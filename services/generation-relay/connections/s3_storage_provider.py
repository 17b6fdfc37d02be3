import asyncio
from typing import Dict

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from core.exceptions import ProviderRejection, ProviderTransportError
from domain.interfaces import ObjectUploader

logger = structlog.get_logger()


class S3StsUploader(ObjectUploader):
    """
    Uploads large source images straight into the provider's bucket using the
    temporary STS credentials it hands out.
    """

    def __init__(self, region: str = "us-west-2"):
        self.region = region

    def _client(self, credentials: Dict[str, str]):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{credentials['s3_host']}",
            aws_access_key_id=credentials["sts_ak"],
            aws_secret_access_key=credentials["sts_sk"],
            aws_session_token=credentials["session_token"],
            region_name=self.region,
            config=Config(s3={"addressing_style": "path"}),
        )

    async def upload(self, data: bytes, content_type: str, credentials: Dict[str, str]) -> None:
        bucket = credentials["resource_bucket"]
        key = credentials["resource_uri"]
        logger.info("uploading_to_provider_storage", bucket=bucket, key=key, size_bytes=len(data))

        try:
            s3_client = self._client(credentials)

            # boto3 is synchronous (blocking); keep it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: s3_client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                ),
            )

        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500)
            logger.error("provider_storage_upload_failed", error=str(e), status=status)
            error_cls = ProviderTransportError if status >= 500 else ProviderRejection
            raise error_cls(
                "Uploading the image to provider storage failed.",
                code=e.response.get("Error", {}).get("Code"),
                provider="tripo",
                original_error=e,
            )
        except BotoCoreError as e:
            logger.error("provider_storage_unreachable", error=str(e))
            raise ProviderTransportError(
                "Could not reach provider storage.", provider="tripo", original_error=e
            )
