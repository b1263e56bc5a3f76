# parser/normalizer.py

import re
import logging
from typing import AbstractSet, Iterable, List, Sequence, Set, Tuple

from models.proxy_model import NodeRecord
from parser.parser import extract_name, replace_name

logger = logging.getLogger(__name__)

# 过滤后没有节点时使用的占位节点
PLACEHOLDER_NAME = "⚠️ 无可用节点"
PLACEHOLDER_BLOCK = f'- {{name: "{PLACEHOLDER_NAME}", type: direct, udp: true}}'


def make_placeholder() -> NodeRecord:
    return NodeRecord(PLACEHOLDER_BLOCK, PLACEHOLDER_NAME)


class NodeNormalizer:
    """
    节点清洗：按关键字过滤、重名加后缀、把最终名称写回节点块。
    """
    def __init__(self, exclude_keywords: Sequence[str] = (), suffix_style: str = "underscore"):
        """
        Args:
            exclude_keywords (Sequence[str]): 名称中包含这些关键字（不区分大小写）的节点会被丢弃。
            suffix_style (str): underscore 生成 "name_1"，bracket 生成 "name [1]"。
        """
        if suffix_style not in ("underscore", "bracket"):
            raise ValueError(f"未知的后缀风格: {suffix_style}")
        self.suffix_style = suffix_style
        keywords = [k for k in exclude_keywords if k]
        self.exclude_pattern = (
            re.compile('|'.join(re.escape(k) for k in keywords), re.IGNORECASE) if keywords else None
        )

    def is_excluded(self, name: str) -> bool:
        return bool(self.exclude_pattern and self.exclude_pattern.search(name))

    def _with_suffix(self, name: str, counter: int) -> str:
        if self.suffix_style == "bracket":
            return f"{name} [{counter}]"
        return f"{name}_{counter}"

    def unique_name(self, name: str, registry: Set[str], reserved: AbstractSet[str] = frozenset()) -> str:
        """
        为名称生成在 registry 中唯一的版本，并登记到 registry。
        第一次出现的名称保持原样，之后依次尝试后缀 1、2、3……
        生成的后缀名还要避开 reserved，即本批次中其他节点本来的名称。
        """
        if name not in registry:
            registry.add(name)
            return name
        counter = 1
        candidate = self._with_suffix(name, counter)
        while candidate in registry or candidate in reserved:
            counter += 1
            candidate = self._with_suffix(name, counter)
        registry.add(candidate)
        return candidate

    def normalize(self, blocks: Iterable[str]) -> List[NodeRecord]:
        """
        清洗一批节点块。
        Args:
            blocks (Iterable[str]): split_into_node_blocks 得到的节点块。
        Returns:
            List[NodeRecord]: 名称唯一、顺序与输入一致的节点。
        """
        kept: List[Tuple[str, str]] = []
        excluded = 0
        for block in blocks:
            name = extract_name(block)
            if not name:
                logger.debug(f"跳过无法提取名称的节点块: {block[:50]}")
                continue
            if self.is_excluded(name):
                excluded += 1
                logger.debug(f"过滤节点: {name}")
                continue
            kept.append((block, name))

        # 每个原始名称的第一次出现都保留原名，后缀不能占用它们
        reserved = frozenset(name for _, name in kept)
        registry: Set[str] = set() # 只在本次调用内有效
        records: List[NodeRecord] = []
        for block, name in kept:
            final_name = self.unique_name(name, registry, reserved)
            records.append(NodeRecord(replace_name(block, final_name), final_name))

        logger.info(f"节点清洗完成：保留 {len(records)} 个，过滤 {excluded} 个。")
        return records
