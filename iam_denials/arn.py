"""Resource-specificity optimization for ARNs."""

from __future__ import annotations

from iam_denials.models import UNKNOWN

# Constants
S3_ARN_PREFIX = "arn:aws:s3:::"
LOGS_ARN_PREFIX = "arn:aws:logs:"
LOG_GROUP_QUALIFIER = "log-group:"
UNSCOPED_RESOURCES = (UNKNOWN, "*")


def optimize_resource_arn(resource: str) -> str:
    """
    Tighten over-broad resource patterns without guessing unseen sub-resources.

    Args:
        resource: Observed resource identifier

    Returns:
        The optimized resource; applying this twice gives the same result

    """
    if resource in UNSCOPED_RESOURCES:
        return resource

    # S3: grant object-level rather than bucket-level access
    if resource.startswith(S3_ARN_PREFIX):
        bucket_path = resource[len(S3_ARN_PREFIX):]
        if bucket_path and "/" not in bucket_path:
            return f"{resource}/*"
        return resource

    # CloudWatch Logs: scope a bare trailing wildcard to log groups
    if resource.startswith(LOGS_ARN_PREFIX) and resource.endswith(":*") and LOG_GROUP_QUALIFIER not in resource:
        return f"{resource[:-1]}{LOG_GROUP_QUALIFIER}*"

    return resource
