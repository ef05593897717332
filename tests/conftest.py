import json

import pytest

from iam_denials.models import LogRecord, ParsedDenial, ResourceInventoryItem

LAMBDA_LOG_GROUP = "/aws/lambda/test-function"

S3_DENIAL_MESSAGE = (
    "User: arn:aws:iam::123456789012:role/test-role is not authorized to perform: "
    "s3:GetObject on resource: arn:aws:s3:::test-bucket/file.txt"
)


def make_record(message, source_id=LAMBDA_LOG_GROUP, stream_id="test-stream", timestamp_ms=1704067200000):
    return LogRecord(timestamp_ms=timestamp_ms, source_id=source_id, stream_id=stream_id, message=message)


def make_denial(action="s3:GetObject", resource="arn:aws:s3:::test-bucket/file.txt",
                error_code="AccessDenied", source=LAMBDA_LOG_GROUP, principal="arn:aws:iam::123456789012:role/test-role"):
    return ParsedDenial(
        timestamp="2024-01-01T00:00:00.000Z",
        source=source,
        stream="test-stream",
        message=error_code,
        action=action,
        resource=resource,
        principal=principal,
        error_code=error_code,
    )


@pytest.fixture
def lambda_resource():
    return ResourceInventoryItem(
        logical_id="TestFunction",
        physical_id="test-function",
        resource_type="AWS::Lambda::Function",
        log_groups=[LAMBDA_LOG_GROUP],
    )


@pytest.fixture
def cloudtrail_denial_message():
    return json.dumps({
        "eventVersion": "1.08",
        "eventSource": "dynamodb.amazonaws.com",
        "eventName": "dynamodb:PutItem",
        "errorCode": "AccessDenied",
        "errorMessage": "User is not authorized to perform dynamodb:PutItem",
        "sourceIPAddress": "10.0.1.15",
        "userAgent": "aws-sdk-python/1.34",
        "userIdentity": {
            "type": "AssumedRole",
            "arn": "arn:aws:sts::123456789012:assumed-role/app-role/session",
            "userName": "app-role",
        },
        "resources": [
            {"ARN": "arn:aws:dynamodb:us-east-1:123456789012:table/Orders", "type": "AWS::DynamoDB::Table"},
        ],
    })
