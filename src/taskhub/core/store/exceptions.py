"""Store 异常 -- 校验失败在任何写入发生前抛出"""


class SnapshotValidationError(ValueError):
    """完成快照缺少 source 或 original_id 等必需字段"""


class PriorityValidationError(ValueError):
    """优先级请求缺少 key 字段或优先级取值非法"""
