"""
Authorization-denial parser.

Turns one raw log record into at most one ParsedDenial. Parsing is two-phase:
a cheap signature check rejects irrelevant lines, then fields are extracted
from the JSON body when the message is a JSON object and from the free text
otherwise. Every text extractor is an ordered tuple of (pattern, extractor)
rules evaluated first-match-wins.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone

from iam_denials.models import UNKNOWN, LogRecord, ParsedDenial

logger = logging.getLogger(__name__)

Rule = tuple[re.Pattern, Callable[[re.Match], str]]

# Value tokens stop at whitespace, commas and quotes so JSON bodies don't leak into them
_TOKEN = r"[^\s,\"']+"
_ARN = r"arn:aws:[^:\s]+:[^:\s]*:[^:\s]*:[^\s,\"']+"
_PRINCIPAL_ARN = r"arn:aws:(?:iam|sts)::[^:\s]+:(?:user|role|assumed-role)/[^\s,\"']+"
_SERVICE_ACTION = r"[a-zA-Z0-9-]+:[a-zA-Z0-9_*-]+"

DENIAL_SIGNATURES = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"AccessDenied",
        r"UnauthorizedOperation",
        r"Forbidden",
        r"not authorized",
        r"permission denied",
        r"access denied",
        r"InvalidUserID\.NotFound",
        r"InvalidAction",
        r"CredentialsNotFound",
        r"InvalidAccessKeyId",
        r"SignatureDoesNotMatch",
        r"TokenRefreshRequired",
        r"AuthorizationFailure",
        # Step Functions and other workflow services
        r"is not authorized to perform:\s*[a-z0-9-]+:",
        r"States\.TaskFailed",
        r"States\.ExecutionFailed",
    )
)

KNOWN_ERROR_CODES = (
    "AccessDenied",
    "UnauthorizedOperation",
    "Forbidden",
    "InvalidUserID.NotFound",
    "InvalidAction",
    "NoSuchBucket",
    "NoSuchKey",
    "CredentialsNotFound",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "TokenRefreshRequired",
)

# Structured key chains, each path walked through nested dicts/lists
ACTION_KEYS = (("eventName",), ("action",), ("operation",))
RESOURCE_KEYS = (("resources", 0, "ARN"), ("resourceARN",), ("resource",), ("bucketName",), ("key",))
PRINCIPAL_KEYS = (("userIdentity", "arn"), ("userIdentity", "userName"), ("principal",), ("user",))
ERROR_CODE_KEYS = (("errorCode",), ("errorMessage",), ("error",))
SOURCE_IP_KEYS = (("sourceIPAddress",), ("sourceIp",))
USER_AGENT_KEYS = (("userAgent",),)


def _captured(match: re.Match) -> str:
    return match.group(1).removesuffix(".")


def _as_table(match: re.Match) -> str:
    name = _captured(match)
    return name if name.startswith("table ") else f"table {name}"


def _constant(value: str) -> Callable[[re.Match], str]:
    return lambda _match: value


def _rule(pattern: str, extractor: Callable[[re.Match], str] = _captured) -> Rule:
    return re.compile(pattern, re.IGNORECASE), extractor


ACTION_RULES: tuple[Rule, ...] = (
    _rule(r"perform:\s*([a-zA-Z0-9:_*-]+)"),
    _rule(rf"\bperform\s+({_SERVICE_ACTION})"),
    _rule(rf"\baction\s+({_SERVICE_ACTION})"),
    _rule(rf"\bAction:\s*({_TOKEN})"),
    _rule(rf"\bOperation:\s*({_TOKEN})"),
    _rule(rf"\bEventName:\s*({_TOKEN})"),
    # Bare service:Verb token, never a segment of an ARN
    _rule(r"(?<![\w:/-])(?!arn:)([a-zA-Z][a-zA-Z0-9-]*:[a-zA-Z][a-zA-Z0-9*]*)(?![\w:])"),
)

RESOURCE_RULES: tuple[Rule, ...] = (
    _rule(rf"on resource:\s*({_ARN})"),
    _rule(rf"\bresource:?\s*({_ARN})"),
    _rule(rf"\bon\s+({_ARN})"),
    _rule(rf"\bon table\s+({_TOKEN})", _as_table),
    _rule(rf"\btable\s+({_TOKEN})", _as_table),
    _rule(rf"\bResource:\s*({_TOKEN})"),
    _rule(rf"\bBucket:\s*({_TOKEN})"),
    _rule(rf"\bKey:\s*({_TOKEN})"),
)

PRINCIPAL_RULES: tuple[Rule, ...] = (
    _rule(rf"\bUser:\s*({_PRINCIPAL_ARN})"),
    _rule(rf"\bPrincipal\s+({_PRINCIPAL_ARN})"),
    _rule(rf"({_PRINCIPAL_ARN})"),
    _rule(r"\bfor\s+(role/[^\s,\"']+)"),
    _rule(rf"\bUser:\s*({_TOKEN})"),
    _rule(rf"\bRole:\s*({_TOKEN})"),
    _rule(rf"\bPrincipal:\s*({_TOKEN})"),
)

ERROR_CODE_RULES: tuple[Rule, ...] = (
    _rule(rf"\bErrorCode:\s*({_TOKEN})"),
    *(_rule(re.escape(code), _constant(code)) for code in KNOWN_ERROR_CODES),
    # Loose phrasing that still means an access denial
    _rule(r"not authorized|access denied", _constant("AccessDenied")),
)


def has_denial_signature(message: str) -> bool:
    """Check whether a message contains any authorization-failure vocabulary."""
    return any(pattern.search(message) for pattern in DENIAL_SIGNATURES)


def apply_rules(rules: tuple[Rule, ...], message: str) -> str | None:
    """
    Run an ordered rule chain against a message.

    Args:
        rules: Ordered (pattern, extractor) pairs
        message: Raw log text

    Returns:
        The first extracted value, or None when no rule matched

    """
    for pattern, extractor in rules:
        match = pattern.search(message)
        if match:
            value = extractor(match)
            if value:
                return value
    return None


def extract_action_from_text(message: str) -> str | None:
    return apply_rules(ACTION_RULES, message)


def extract_resource_from_text(message: str) -> str | None:
    return apply_rules(RESOURCE_RULES, message)


def extract_principal_from_text(message: str) -> str | None:
    return apply_rules(PRINCIPAL_RULES, message)


def extract_error_code_from_text(message: str) -> str | None:
    return apply_rules(ERROR_CODE_RULES, message)


def _lookup(data: dict, path: tuple) -> str | None:
    """Walk a key path; only a non-blank string counts as a resolved value."""
    value = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(value, list) or len(value) <= step:
                return None
            value = value[step]
        else:
            if not isinstance(value, dict):
                return None
            value = value.get(step)
    if isinstance(value, str) and value.strip():
        return value
    return None


def extract_structured(data: dict, key_chain: tuple[tuple, ...]) -> str | None:
    """Return the first non-blank string found along an ordered key chain."""
    for path in key_chain:
        value = _lookup(data, path)
        if value is not None:
            return value
    return None


def decode_structured(message: str) -> dict | None:
    """Decode a message as a JSON object, or None if it is anything else."""
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def format_timestamp(timestamp_ms: int | None) -> str:
    """Convert epoch milliseconds to ISO 8601 UTC ('2024-01-01T00:00:00.000Z')."""
    if timestamp_ms is None:
        return UNKNOWN
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return UNKNOWN
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _or_unknown(value: str | None) -> str:
    return value if value else UNKNOWN


def parse_denial(record: LogRecord) -> ParsedDenial | None:
    """
    Parse a log record into a permission denial.

    Args:
        record: Raw log record

    Returns:
        ParsedDenial when the message carries a denial signature, otherwise None.
        Unresolvable fields are set to "Unknown"; this function never raises.

    """
    message = record.message if isinstance(record.message, str) else ""
    if not has_denial_signature(message):
        return None

    structured = decode_structured(message)

    if structured is None:
        action = extract_action_from_text(message)
        resource = extract_resource_from_text(message)
        principal = extract_principal_from_text(message)
        error_code = extract_error_code_from_text(message)
        source_ip = None
        user_agent = None
    else:
        action = extract_structured(structured, ACTION_KEYS) or extract_action_from_text(message)
        resource = extract_structured(structured, RESOURCE_KEYS) or extract_resource_from_text(message)
        principal = extract_structured(structured, PRINCIPAL_KEYS) or extract_principal_from_text(message)
        error_code = extract_structured(structured, ERROR_CODE_KEYS) or extract_error_code_from_text(message)
        source_ip = extract_structured(structured, SOURCE_IP_KEYS)
        user_agent = extract_structured(structured, USER_AGENT_KEYS)

    denial = ParsedDenial(
        timestamp=format_timestamp(record.timestamp_ms),
        source=_or_unknown(record.source_id),
        stream=_or_unknown(record.stream_id),
        message=message,
        action=_or_unknown(action),
        resource=_or_unknown(resource),
        principal=_or_unknown(principal),
        error_code=_or_unknown(error_code),
        source_ip=source_ip,
        user_agent=user_agent,
    )
    logger.debug(
        f"Parsed {'structured' if structured is not None else 'text'} denial in {denial.source}: "
        f"{denial.action} on {denial.resource} ({denial.error_code})",
    )
    return denial
