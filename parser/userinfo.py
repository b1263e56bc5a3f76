# parser/userinfo.py

import logging
from typing import Dict, Iterable, Optional

from models.proxy_model import FetchResult, UsageSummary

logger = logging.getLogger(__name__)

USERINFO_KEYS = ("upload", "download", "total", "expire")


def parse_userinfo(header: Optional[str]) -> Optional[Dict[str, int]]:
    """
    解析 Subscription-Userinfo 响应头，如 "upload=1; download=2; total=3; expire=4"。
    Args:
        header (Optional[str]): 响应头的值。
    Returns:
        Optional[Dict[str, int]]: 已知键对应的整数值；响应头缺失或格式错误时返回 None。
    """
    if not header:
        return None

    info: Dict[str, int] = {}
    for part in header.split(';'):
        if '=' not in part:
            continue
        key, value = part.split('=', 1)
        key = key.strip().lower()
        if key not in USERINFO_KEYS:
            continue
        value = value.strip()
        if not value: # 有的机场会下发 "expire="
            continue
        try:
            info[key] = int(float(value))
        except (ValueError, OverflowError):
            logger.debug(f"流量信息格式错误，忽略: {header}")
            return None
        if key != "expire" and info[key] < 0: # 流量不能为负
            logger.debug(f"流量信息含负数，忽略: {header}")
            return None

    return info or None


def fold_usage(results: Iterable[FetchResult]) -> UsageSummary:
    """
    把一轮成功抓取的流量信息累加到一个 UsageSummary。
    Args:
        results (Iterable[FetchResult]): 成功的抓取结果。
    Returns:
        UsageSummary: 汇总结果，subscription_count 为成功抓取的订阅数。
    """
    summary = UsageSummary()
    for result in results:
        summary.subscription_count += 1
        info = parse_userinfo(result.usage_header)
        if info is None:
            continue
        summary.add(info)
    return summary
