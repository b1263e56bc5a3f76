# output/groups.py

import re
from collections import OrderedDict
from typing import Dict, Iterable, List, NamedTuple, Pattern

from parser.parser import quote_name


class Region(NamedTuple):
    key: str
    label: str        # 配置文件中的策略组名称
    pattern: Pattern


# 按顺序匹配，一个名称只归入第一个命中的地区
REGIONS = (
    Region("HongKong", "🇭🇰 Hong Kong", re.compile(r"HK|Hong|Kong|港|香港", re.IGNORECASE)),
    Region("Taiwan", "🇹🇼 Taiwan", re.compile(r"TW|Taiwan|台|台湾", re.IGNORECASE)),
    Region("Japan", "🇯🇵 Japan", re.compile(r"JP|Japan|日|日本", re.IGNORECASE)),
    Region("Singapore", "🇸🇬 Singapore", re.compile(r"SG|Singapore|狮城|新|新加坡", re.IGNORECASE)),
    Region("USA", "🇺🇸 USA", re.compile(r"US|United|States|America|美|美国", re.IGNORECASE)),
)

OTHERS_KEY = "Others"
OTHERS_LABEL = "🌍 Others"


class RegionBucket:
    """一个地区分组及其节点名称（有序、无重复）。"""
    def __init__(self, key: str, label: str):
        self.key = key
        self.label = label
        self.names: List[str] = []

    def __len__(self):
        return len(self.names)

    def __repr__(self):
        return f"RegionBucket({self.key}, {len(self.names)} nodes)"


def region_of(name: str) -> str:
    """返回名称所属地区的 key，都不匹配时为 Others。"""
    for region in REGIONS:
        if region.pattern.search(name):
            return region.key
    return OTHERS_KEY


def classify(names: Iterable[str]) -> Dict[str, RegionBucket]:
    """
    把节点名称划分到各地区分组，分组之间互不重叠，并集等于输入。
    Args:
        names (Iterable[str]): 去重后的节点名称。
    Returns:
        Dict[str, RegionBucket]: 按 HongKong、Taiwan、Japan、Singapore、USA、Others 排列的分组。
    """
    buckets: Dict[str, RegionBucket] = OrderedDict(
        (region.key, RegionBucket(region.key, region.label)) for region in REGIONS
    )
    buckets[OTHERS_KEY] = RegionBucket(OTHERS_KEY, OTHERS_LABEL)

    seen = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        buckets[region_of(name)].names.append(name)
    return buckets


def render_group(names: Iterable[str], indent: int = 6) -> str:
    """
    生成策略组的 proxies 列表。空分组输出一个 DIRECT，避免客户端加载失败。
    Args:
        names (Iterable[str]): 节点名称。
        indent (int): 每行的缩进空格数。
    Returns:
        str: YAML 列表文本。
    """
    prefix = " " * indent
    lines = [f"{prefix}- {quote_name(name)}" for name in names]
    if not lines:
        return f"{prefix}- DIRECT"
    return "\n".join(lines)
