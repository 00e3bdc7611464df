"""CloudWatch metrics for News Digest Bot broadcasts."""

from typing import Any

import boto3

from .logging_config import create_execution_logger

NAMESPACE = "News-Digest-Bot"

# PutMetricData accepts at most this many datums per call
MAX_DATUMS_PER_CALL = 20

# (metric name, key in the metrics dict) reported per route as counts
ROUTE_COUNTERS = (
    ("ItemsFound", "items_found"),
    ("ItemsSummarized", "items_summarized"),
    ("ItemsFailed", "items_failed"),
    ("MessagesSent", "messages_sent"),
)


def _datum(name: str, value: float, dimensions: list[dict], unit: str = "Count") -> dict:
    return {"MetricName": name, "Value": value, "Unit": unit, "Dimensions": dimensions}


def build_metric_data(metrics: dict[str, Any]) -> list[dict]:
    """Translate a broadcast's metrics dict into CloudWatch datums.

    Counters carry a ``Route`` dimension; the success and failure flags carry
    a ``Status`` dimension so alarms can be set on either independently.
    """
    error_count = len(metrics.get("errors", []))
    succeeded = error_count == 0
    route = [{"Name": "Route", "Value": metrics.get("route", "unknown")}]
    status = [{"Name": "Status", "Value": "Success" if succeeded else "Failure"}]

    data = [_datum(name, metrics.get(key, 0), route) for name, key in ROUTE_COUNTERS]
    data.append(_datum("Errors", error_count, route))
    data.append(_datum("ExecutionSuccess", int(succeeded), status))
    data.append(_datum("ExecutionFailure", int(not succeeded), status))

    found = metrics.get("items_found", 0)
    rate = metrics.get("items_summarized", 0) / max(found, 1) * 100
    data.append(_datum("SummarySuccessRate", rate, route, unit="Percent"))
    return data


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """Publish broadcast metrics to CloudWatch.

    Failures are logged and dropped; metrics never fail a broadcast.

    Args:
        metrics: Metrics dict built by the broadcast route
        aws_region: Region of the CloudWatch endpoint
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)
    metric_data = build_metric_data(metrics)

    try:
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)
        for start in range(0, len(metric_data), MAX_DATUMS_PER_CALL):
            batch = metric_data[start : start + MAX_DATUMS_PER_CALL]
            cloudwatch.put_metric_data(Namespace=NAMESPACE, MetricData=batch)
            metrics_logger.debug(f"Sent batch of {len(batch)} metrics to CloudWatch")
    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
        return

    metrics_logger.info(
        "Sent metrics to CloudWatch",
        metrics_sent=len(metric_data),
        namespace=NAMESPACE,
        route=metrics.get("route", "unknown"),
    )
