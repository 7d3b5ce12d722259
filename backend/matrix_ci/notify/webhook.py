"""Webhook 投递 - 以 JSON POST 通知负载"""

from __future__ import annotations

import logging
from typing import Any

import requests

from .. import __version__
from ..interfaces import DeliveryError, INotifyTransport

logger = logging.getLogger(__name__)


class WebhookTransport(INotifyTransport):
    """HTTP POST 投递（不重试）"""

    def __init__(self, timeout: int = 30, headers: dict[str, str] | None = None):
        self.timeout = timeout
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": f"matrix-ci/{__version__}",
        }
        self.headers.update(headers or {})

    def deliver(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            raise DeliveryError(f"webhook HTTP错误 ({status}): {url}") from e
        except requests.RequestException as e:
            raise DeliveryError(f"webhook 投递失败: {url}: {e}") from e

        logger.info(f"webhook 已投递 {url}: {response.status_code}")
