"""
Result webhook for ExamForge.

Best-effort POST of an attempt summary to a configured URL. Failures are
logged and swallowed; there are no retries. The attempt flow delivers on a
background thread so a slow endpoint never holds up the results.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from examforge.models import TestDefinition, round_half_up
from examforge.results import AttemptReport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


def build_payload(test: TestDefinition, report: AttemptReport, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    """Summary sent to the webhook: {testId, score, passed, topicResults, timestamp}."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return {
        "testId": test.id,
        "score": round_half_up(report.percent),
        "passed": report.passed,
        "topicResults": [tr.to_dict() for tr in report.topic_results],
        "timestamp": timestamp.isoformat(),
    }


def post_result(url: Optional[str], payload: Dict[str, Any], timeout: float = DEFAULT_TIMEOUT) -> bool:
    """POST the payload as JSON.

    Args:
        url: Webhook URL. Nothing is sent when empty.
        payload: JSON-serializable summary, see build_payload().
        timeout: Request timeout in seconds.

    Returns:
        True if the endpoint answered with a 2xx status, False otherwise.
    """
    if not url:
        return False
    try:
        response = requests.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.warning("Webhook call to %s failed: %s", url, e)
        return False
    logger.info("Webhook delivered to %s (%s)", url, response.status_code)
    return True


def send_result_async(
    url: Optional[str], payload: Dict[str, Any], timeout: float = DEFAULT_TIMEOUT
) -> Optional[threading.Thread]:
    """Run post_result() on a daemon thread and return the started thread.

    Returns None when there is no URL to deliver to.
    """
    if not url:
        return None
    thread = threading.Thread(target=post_result, args=(url, payload, timeout), name="examforge-webhook")
    thread.daemon = True
    thread.start()
    return thread
