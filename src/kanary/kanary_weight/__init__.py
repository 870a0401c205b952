"""Kanary权重控制器

灰度发布阶段状态机：
- Pending -> Progressing：开始发布
- Progressing：窗口成功率达标时按步长提升canary权重
- Progressing -> Paused：指标长时间不可用
- Progressing -> Promoted：在最大权重保持健康满烘焙时间
- Progressing/Paused -> RolledBack：成功率跌破阈值减去滞后余量
- 非终态 -> Failed：不可恢复的写入错误
"""

from kanary.kanary_weight.controller import (
    ALLOWED_TRANSITIONS,
    Action,
    Decision,
    WeightController,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Action",
    "Decision",
    "WeightController",
]
