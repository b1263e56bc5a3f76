# models/proxy_model.py

from typing import Dict, NamedTuple, Optional, Union

GIB = 1024 ** 3 # 1 GB（按 2^30 字节计算）


class FetchResult(NamedTuple):
    """一次成功抓取的结果。"""
    raw_text: str                 # 响应正文
    usage_header: Optional[str]   # Subscription-Userinfo 响应头，可能不存在
    source_url: str               # 原始订阅地址
    fetch_url: str                # 实际请求的地址（可能经过转换后端包装）


class FetchError(NamedTuple):
    """一次失败抓取的结果，只用于日志和统计，不会向上抛出。"""
    source_url: str
    fetch_url: str
    reason: str


FetchOutcome = Union[FetchResult, FetchError]


class NodeRecord:
    """
    一个代理节点：原始文本块加上显示名称。
    归一化之后，raw_block 中的 name 字段与 display_name 保持一致。
    """
    def __init__(self, raw_block: str, display_name: str):
        self.raw_block = raw_block
        self.display_name = display_name

    def __eq__(self, other):
        if not isinstance(other, NodeRecord):
            return NotImplemented
        return self.raw_block == other.raw_block and self.display_name == other.display_name

    def __repr__(self):
        return f"NodeRecord(display_name='{self.display_name}')"


class UsageSummary:
    """
    多个订阅的流量汇总。只会单调累加：
    用量和总量只增不减，到期时间和最小剩余流量只会变得更早、更少。
    """
    def __init__(self):
        self.upload = 0
        self.download = 0
        self.total = 0
        self.earliest_expire: Optional[int] = None     # None 表示长期有效或未知
        self.min_remaining_gb: Optional[float] = None  # None 表示未知
        self.subscription_count = 0

    @property
    def used_bytes(self) -> int:
        return self.upload + self.download

    def add(self, info: Dict[str, int]):
        """
        合并一个订阅的流量信息。
        Args:
            info (Dict[str, int]): parse_userinfo 解析出的字典，键为 upload/download/total/expire。
        """
        upload = info.get('upload', 0)
        download = info.get('download', 0)
        self.upload += upload
        self.download += download
        self.total += info.get('total', 0)

        expire = info.get('expire', 0)
        if expire > 0 and (self.earliest_expire is None or expire < self.earliest_expire):
            self.earliest_expire = expire

        # 没有 total 时无法计算剩余流量；剩余为非正数时视为未知
        if 'total' in info:
            remaining = (info['total'] - upload - download) / GIB
            if remaining > 0 and (self.min_remaining_gb is None or remaining < self.min_remaining_gb):
                self.min_remaining_gb = remaining

    def __repr__(self):
        return (f"UsageSummary(used={self.used_bytes}, total={self.total}, "
                f"expire={self.earliest_expire}, count={self.subscription_count})")
