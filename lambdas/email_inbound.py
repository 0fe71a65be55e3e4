import os
from email.parser import BytesParser
from email.policy import default as default_policy
from email.utils import parseaddr
from typing import Any, TypedDict

import boto3
from attrs import define, field
from attrs.validators import instance_of
from aws_lambda_powertools.logging.logger import Logger
from aws_lambda_powertools.tracing import Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext
from botocore.exceptions import ClientError

logger: Logger = Logger(
    service="email-inbound", level=os.getenv("LOG_LEVEL", "INFO").upper()
)
tracer: Tracer = Tracer(service="email-inbound")

bucket_name = os.environ.get("BUCKET")
inbound_prefix = os.getenv("INBOUND_PREFIX", "tmp/email_in/")
s3_endpoint = os.getenv("S3_ENDPOINT", None)
s3_client = boto3.client(
    "s3", endpoint_url=s3_endpoint, region_name=os.getenv("AWS_REGION", "us-east-1")
)


class SesReceipt(TypedDict):
    recipients: list[str]


class SesMail(TypedDict):
    messageId: str
    source: str


class SesRecordBody(TypedDict):
    mail: SesMail
    receipt: SesReceipt


class SesRecord(TypedDict):
    ses: SesRecordBody


class SesEvent(TypedDict):
    Records: list[SesRecord]


@define(slots=True, kw_only=True, frozen=True)
class InboundMessage:
    message_id: str = field(validator=instance_of(str))
    sender: str = field(validator=instance_of(str))
    subject: str = field(validator=instance_of(str))
    recipients: tuple[str, ...] = field(converter=tuple)

    def inbox_keys(self) -> list[str]:
        return [
            f"inbox/{recipient.lower()}/{self.sender.lower()}/{self.message_id}"
            for recipient in self.recipients
        ]


def parse_message(message_id: str, raw: bytes, recipients: list[str]) -> InboundMessage:
    message = BytesParser(policy=default_policy).parsebytes(raw, headersonly=True)
    sender = parseaddr(str(message.get("From", "")))[1] or "unknown"
    return InboundMessage(
        message_id=message_id,
        sender=sender,
        subject=str(message.get("Subject", "")),
        recipients=recipients,
    )


@tracer.capture_method
def _file_message(record: SesRecord) -> list[str]:
    mail = record["ses"]["mail"]
    message_id = mail["messageId"]
    source_key = f"{inbound_prefix}{message_id}"
    raw = s3_client.get_object(Bucket=bucket_name, Key=source_key)["Body"].read()
    message = parse_message(message_id, raw, record["ses"]["receipt"]["recipients"])
    keys = message.inbox_keys()
    for key in keys:
        s3_client.copy_object(
            Bucket=bucket_name,
            Key=key,
            CopySource={"Bucket": bucket_name, "Key": source_key},
        )
    logger.info(
        "Filed inbound email",
        message_id=message_id,
        sender=message.sender,
        subject=message.subject,
        copies=len(keys),
    )
    return keys


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def handler(event: SesEvent, context: LambdaContext) -> dict[str, Any]:
    return file_inbound_email(event=event, context=context)


def file_inbound_email(event: SesEvent, context: LambdaContext) -> dict[str, Any]:
    if not bucket_name:
        logger.error("BUCKET environment variable missing, cannot continue.")
        return {"status_code": 500, "message": "Configuration environment variable missing"}

    try:
        keys = [key for record in event.get("Records", []) for key in _file_message(record)]
    except ClientError as e:
        error_info = e.response.get("Error", {})
        logger.exception("Filing inbound email failed", bucket=bucket_name)
        return {
            "status_code": e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500),
            "message": error_info.get("Message", str(e)),
        }
    return {"status_code": 200, "message": f"Filed {len(keys)} message copies", "keys": keys}
