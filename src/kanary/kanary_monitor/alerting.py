"""
告警通知模块

发布回滚或失败时记录告警。
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from kanary.models import Phase, RolloutState

logger = logging.getLogger(__name__)

MAX_ALERT_HISTORY = 1000

SEVERITY_BY_PHASE = {
    Phase.ROLLED_BACK: "warning",
    Phase.FAILED: "critical",
}


class AlertHistory:
    """有界的告警历史"""

    def __init__(self, limit: int = MAX_ALERT_HISTORY) -> None:
        self._lock = threading.Lock()
        self._alerts: List[Dict[str, Any]] = []
        self._limit = limit

    def send_alert(self, alert: Dict[str, Any]) -> bool:
        """
        发送告警通知

        Args:
            alert: 告警信息字典

        Returns:
            是否发送成功
        """
        alert = dict(alert)
        alert["timestamp"] = datetime.now().isoformat()
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self._limit:
                self._alerts.pop(0)

        logger.error(
            f"Alert: {alert.get('summary', 'Unknown')} - "
            f"Severity: {alert.get('severity', 'info')} - "
            f"Rollout: {alert.get('rollout_id', 'N/A')}"
        )
        return True

    def check_rollout(self, state: RolloutState) -> Optional[Dict[str, Any]]:
        """
        检查发布是否进入需要告警的终态

        Args:
            state: 发布状态

        Returns:
            发出的告警，无需告警时返回None
        """
        severity = SEVERITY_BY_PHASE.get(state.phase)
        if severity is None:
            return None
        alert = {
            "type": f"rollout_{state.phase.value.lower()}",
            "summary": f"Rollout of {state.plan.service} {state.phase.value}: {state.reason}",
            "rollout_id": state.rollout_id,
            "service": state.plan.service,
            "canary_revision": state.plan.canary_revision,
            "severity": severity,
        }
        self.send_alert(alert)
        return alert

    def get_alert_history(self, limit: int = 100) -> List[Dict[str, Any]]:
        """
        获取告警历史

        Args:
            limit: 返回的最大数量

        Returns:
            告警历史列表
        """
        with self._lock:
            return list(self._alerts[-limit:])

    def clear_alert_history(self) -> None:
        with self._lock:
            self._alerts.clear()
        logger.info("Alert history cleared")
