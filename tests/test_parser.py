"""Tests for iam_denials/parser.py"""

import json

import pytest

from conftest import S3_DENIAL_MESSAGE, make_record
from iam_denials.models import UNKNOWN
from iam_denials.parser import (
    ACTION_RULES,
    extract_action_from_text,
    extract_error_code_from_text,
    extract_principal_from_text,
    extract_resource_from_text,
    format_timestamp,
    has_denial_signature,
    parse_denial,
)


class TestSignatureCheck:
    @pytest.mark.parametrize("message", [
        "INFO: Function executed successfully",
        "Some random log message without permission denial",
        "",
        "START RequestId: 1234 Version: $LATEST",
    ])
    def test_no_denial_vocabulary_returns_none(self, message):
        assert parse_denial(make_record(message)) is None

    @pytest.mark.parametrize("message", [
        "AccessDenied",
        "accessdenied while reading",
        "An error occurred (UnauthorizedOperation)",
        "403 Forbidden",
        "permission denied for relation users",
        "SignatureDoesNotMatch: bad signature",
        "States.TaskFailed in step ProcessOrder",
        "States.ExecutionFailed",
        "role is not authorized to perform: sns:Publish",
    ])
    def test_denial_vocabulary_detected(self, message):
        assert has_denial_signature(message)

    def test_non_string_message_is_rejected(self):
        assert parse_denial(make_record(None)) is None


class TestTextParsing:
    def test_standard_access_denied_message(self):
        denial = parse_denial(make_record(S3_DENIAL_MESSAGE))
        assert denial is not None
        assert denial.action == "s3:GetObject"
        assert denial.resource == "arn:aws:s3:::test-bucket/file.txt"
        assert denial.principal == "arn:aws:iam::123456789012:role/test-role"
        assert denial.error_code == "AccessDenied"
        assert denial.source_ip is None
        assert denial.user_agent is None

    def test_record_metadata_is_carried(self):
        denial = parse_denial(make_record(S3_DENIAL_MESSAGE, source_id="/aws/lambda/fn", stream_id="2024/01/01/[$LATEST]abc"))
        assert denial.source == "/aws/lambda/fn"
        assert denial.stream == "2024/01/01/[$LATEST]abc"
        assert denial.message == S3_DENIAL_MESSAGE
        assert denial.timestamp == "2024-01-01T00:00:00.000Z"

    def test_unauthorized_operation(self):
        denial = parse_denial(make_record("UnauthorizedOperation: You are not authorized to perform this operation."))
        assert denial.error_code == "UnauthorizedOperation"
        assert denial.action == UNKNOWN

    def test_forbidden_table_access(self):
        denial = parse_denial(make_record("Forbidden: Access denied to dynamodb:Query on table users"))
        assert denial.action == "dynamodb:Query"
        assert denial.resource == "table users"
        assert denial.error_code == "Forbidden"

    def test_put_item_on_table(self):
        denial = parse_denial(
            make_record("AccessDenied: User is not authorized to perform dynamodb:PutItem on table test-table"),
        )
        assert denial.action == "dynamodb:PutItem"
        assert denial.resource == "table test-table"
        assert denial.error_code == "AccessDenied"

    def test_unresolved_fields_default_to_unknown(self):
        denial = parse_denial(make_record("permission denied"))
        assert denial.action == UNKNOWN
        assert denial.resource == UNKNOWN
        assert denial.principal == UNKNOWN
        assert denial.error_code == UNKNOWN

    @pytest.mark.parametrize("message", [
        "AccessDenied",
        "not authorized",
        "Forbidden {",
        "{not json but AccessDenied",
        "[1, 2, \"AccessDenied\"]",
    ])
    def test_no_field_left_blank(self, message):
        denial = parse_denial(make_record(message))
        assert denial is not None
        for value in (denial.action, denial.resource, denial.principal, denial.error_code,
                      denial.timestamp, denial.source, denial.stream):
            assert value != ""

    def test_missing_timestamp_defaults_to_unknown(self):
        denial = parse_denial(make_record(S3_DENIAL_MESSAGE, timestamp_ms=None))
        assert denial.timestamp == UNKNOWN


class TestStructuredParsing:
    def test_cloudtrail_event(self, cloudtrail_denial_message):
        denial = parse_denial(make_record(cloudtrail_denial_message))
        assert denial.action == "dynamodb:PutItem"
        assert denial.resource == "arn:aws:dynamodb:us-east-1:123456789012:table/Orders"
        assert denial.principal == "arn:aws:sts::123456789012:assumed-role/app-role/session"
        assert denial.error_code == "AccessDenied"
        assert denial.source_ip == "10.0.1.15"
        assert denial.user_agent == "aws-sdk-python/1.34"

    def test_json_without_structured_fields_falls_back_to_text(self):
        message = json.dumps({
            "level": "ERROR",
            "message": "AccessDenied: User is not authorized to perform s3:PutObject",
            "timestamp": "2024-01-01T00:00:00Z",
        })
        denial = parse_denial(make_record(message))
        assert denial.action == "s3:PutObject"
        assert denial.error_code == "AccessDenied"

    def test_action_key_precedence(self):
        message = json.dumps({"operation": "op", "action": "act", "eventName": "evt", "errorCode": "AccessDenied"})
        assert parse_denial(make_record(message)).action == "evt"

        message = json.dumps({"operation": "op", "action": "act", "errorCode": "AccessDenied"})
        assert parse_denial(make_record(message)).action == "act"

    def test_resource_key_precedence(self):
        message = json.dumps({
            "errorCode": "AccessDenied",
            "resourceARN": "arn:aws:sqs:us-east-1:123456789012:queue",
            "bucketName": "my-bucket",
            "key": "object.txt",
        })
        assert parse_denial(make_record(message)).resource == "arn:aws:sqs:us-east-1:123456789012:queue"

        message = json.dumps({"errorCode": "AccessDenied", "bucketName": "my-bucket", "key": "object.txt"})
        assert parse_denial(make_record(message)).resource == "my-bucket"

    def test_principal_falls_back_to_user_name(self):
        message = json.dumps({"errorCode": "AccessDenied", "userIdentity": {"userName": "alice"}, "user": "bob"})
        assert parse_denial(make_record(message)).principal == "alice"

    def test_error_message_used_when_error_code_missing(self):
        message = json.dumps({"eventName": "GetObject", "errorMessage": "Access Denied"})
        assert parse_denial(make_record(message)).error_code == "Access Denied"

    def test_blank_and_non_string_values_fall_through(self):
        message = json.dumps({
            "eventName": "",
            "action": {"nested": True},
            "operation": "s3:ListBucket",
            "errorCode": "AccessDenied",
        })
        assert parse_denial(make_record(message)).action == "s3:ListBucket"

    def test_empty_resources_list_falls_through(self):
        message = json.dumps({"errorCode": "AccessDenied", "resources": [], "resource": "my-table"})
        assert parse_denial(make_record(message)).resource == "my-table"

    def test_source_ip_alternate_key(self):
        message = json.dumps({"errorCode": "AccessDenied", "sourceIp": "192.168.1.4"})
        assert parse_denial(make_record(message)).source_ip == "192.168.1.4"


class TestTextExtractors:
    @pytest.mark.parametrize("message,expected", [
        ("not authorized to perform: s3:GetObject on resource", "s3:GetObject"),
        ("perform dynamodb:PutItem on table", "dynamodb:PutItem"),
        ("action lambda:InvokeFunction denied", "lambda:InvokeFunction"),
        ("Denied. Action: sqs:SendMessage, queue", "sqs:SendMessage"),
        ("Operation: PutItem failed with AccessDenied", "PutItem"),
        ("EventName: CreateBucket", "CreateBucket"),
        ("Access denied to kms:Decrypt", "kms:Decrypt"),
    ])
    def test_action_formats(self, message, expected):
        assert extract_action_from_text(message) == expected

    def test_action_ignores_arn_segments(self):
        message = "AccessDenied for arn:aws:iam::123456789012:role/app-role"
        assert extract_action_from_text(message) is None

    def test_action_rules_are_ordered(self):
        message = "EventName: Other action s3:PutObject"
        assert extract_action_from_text(message) == "s3:PutObject"
        assert len(ACTION_RULES) == 7

    @pytest.mark.parametrize("message,expected", [
        ("on resource: arn:aws:s3:::test-bucket/file.txt", "arn:aws:s3:::test-bucket/file.txt"),
        ("on table test-users", "table test-users"),
        ("resource arn:aws:lambda:us-east-1:123456789012:function:test",
         "arn:aws:lambda:us-east-1:123456789012:function:test"),
        ("denied on arn:aws:sns:us-east-1:123456789012:alerts", "arn:aws:sns:us-east-1:123456789012:alerts"),
        ("Bucket: my-bucket, Forbidden", "my-bucket"),
        ("Key: reports/2024.csv", "reports/2024.csv"),
    ])
    def test_resource_formats(self, message, expected):
        assert extract_resource_from_text(message) == expected

    def test_resource_does_not_pick_up_principal_arn(self):
        message = "User: arn:aws:iam::123456789012:role/test-role is not authorized to perform: s3:ListBucket"
        assert extract_resource_from_text(message) is None

    def test_resource_strips_trailing_period(self):
        message = "not authorized to perform: s3:GetObject on resource: arn:aws:s3:::bucket/key."
        assert extract_resource_from_text(message) == "arn:aws:s3:::bucket/key"

    def test_only_one_trailing_period_stripped(self):
        message = "not authorized to perform: s3:GetObject on resource: arn:aws:s3:::bucket/key.."
        assert extract_resource_from_text(message) == "arn:aws:s3:::bucket/key."

    @pytest.mark.parametrize("message,expected", [
        ("User: arn:aws:iam::123456789012:role/test-role is not authorized",
         "arn:aws:iam::123456789012:role/test-role"),
        ("Principal arn:aws:iam::123456789012:user/test-user access denied",
         "arn:aws:iam::123456789012:user/test-user"),
        ("AccessDenied for role/lambda-execution-role", "role/lambda-execution-role"),
        ("User: alice is not authorized", "alice"),
        ("Role: deploy-role, Forbidden", "deploy-role"),
    ])
    def test_principal_formats(self, message, expected):
        assert extract_principal_from_text(message) == expected

    @pytest.mark.parametrize("message,expected", [
        ("ErrorCode: ThrottlingException AccessDenied", "ThrottlingException"),
        ("An error occurred (accessdenied) when calling", "AccessDenied"),
        ("NoSuchBucket: The specified bucket does not exist", "NoSuchBucket"),
        ("InvalidUserID.NotFound", "InvalidUserID.NotFound"),
        ("User is not authorized", "AccessDenied"),
        ("Access Denied", "AccessDenied"),
        ("permission denied", None),
    ])
    def test_error_code_formats(self, message, expected):
        assert extract_error_code_from_text(message) == expected

    def test_known_error_codes_follow_list_order(self):
        assert extract_error_code_from_text("Forbidden after UnauthorizedOperation") == "UnauthorizedOperation"


class TestFormatTimestamp:
    def test_epoch_millis(self):
        assert format_timestamp(1704067200123) == "2024-01-01T00:00:00.123Z"

    def test_none(self):
        assert format_timestamp(None) == UNKNOWN

    def test_out_of_range(self):
        assert format_timestamp(10**20) == UNKNOWN
