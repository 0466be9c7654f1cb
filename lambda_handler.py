"""
AWS Lambda Handler for the Relay

Lambda entry point. Mangum adapts the FastAPI app to API Gateway (REST
and HTTP APIs) and Lambda Function URL events.
"""

from typing import Any, Dict, Optional, Tuple

from mangum import Mangum

from relay.main import app
from relay.utils.logging_config import get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "x-correlation-id"

# api_gateway_base_path is "/" so Mangum strips stage prefixes itself
handler = Mangum(app, lifespan="off", api_gateway_base_path="/")


def _request_line(event: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """Method and path for payload format 2.0 / Function URLs, else 1.0"""
    http = event.get("requestContext", {}).get("http")
    if http:
        return http.get("method"), event.get("rawPath") or http.get("path")
    return event.get("httpMethod"), event.get("path")


def _ensure_correlation_id(event: Dict[str, Any], request_id: str) -> str:
    """
    Default the correlation ID to the Lambda request ID so application
    logs line up with the platform's own invocation logs.
    """
    headers = event.get("headers") or {}
    for name, value in headers.items():
        if name.lower() == CORRELATION_HEADER and value:
            return value

    headers[CORRELATION_HEADER] = request_id
    event["headers"] = headers
    return request_id


def lambda_handler(event, context):
    """
    AWS Lambda handler function with invocation logging.

    Args:
        event: API Gateway or Function URL event
        context: Lambda context with runtime information

    Returns:
        API Gateway response format
    """
    method, path = _request_line(event)
    correlation_id = _ensure_correlation_id(event, context.aws_request_id)

    logger.info(
        f"Lambda invocation started: {method} {path}",
        extra={
            "request_id": context.aws_request_id,
            "correlation_id": correlation_id,
            "remaining_time": context.get_remaining_time_in_millis(),
        },
    )

    try:
        response = handler(event, context)
    except Exception as e:
        logger.error(
            f"Lambda invocation failed: {e}",
            exc_info=True,
            extra={"request_id": context.aws_request_id, "error_type": type(e).__name__},
        )
        raise

    logger.info(
        "Lambda invocation completed",
        extra={
            "request_id": context.aws_request_id,
            "status_code": response.get("statusCode"),
        },
    )
    return response


__all__ = ["handler", "lambda_handler"]
