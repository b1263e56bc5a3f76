# service/aggregator.py

import logging
from typing import List, NamedTuple, Optional, Sequence

import aiohttp

from config import Settings
from models.proxy_model import FetchResult, NodeRecord
from output.groups import classify
from output.writer import format_usage_comment, format_userinfo_header, render_config
from parser.normalizer import NodeNormalizer, make_placeholder
from parser.parser import split_into_node_blocks
from parser.userinfo import fold_usage
from scraper.fetcher import fetch_all, plan_rounds

logger = logging.getLogger(__name__)


class AggregationError(Exception):
    """所有后端都没有拿到可用节点。"""


class AggregatedConfig(NamedTuple):
    document: str          # 生成的配置文本
    userinfo: str          # Subscription-Userinfo 响应头
    node_count: int


class SubscriptionAggregator:
    """
    一次请求的完整流程：抓取 -> 提取节点块 -> 清洗 -> 流量汇总 -> 分组 -> 渲染。
    不保存任何跨请求的状态。
    """
    def __init__(self, settings: Settings):
        self.settings = settings
        self.normalizer = NodeNormalizer(settings.exclude_keywords, settings.duplicate_suffix)

    async def collect(self, sources: Sequence[str],
                      session: Optional[aiohttp.ClientSession] = None):
        """
        按优先级逐轮抓取，第一轮拿到节点块后立即停止，不再请求剩下的后端。
        Args:
            sources (Sequence[str]): 订阅地址。
            session (Optional[aiohttp.ClientSession]): 可选的外部会话，默认为本次请求新建一个。
        Returns:
            Tuple[List[str], List[FetchResult]]: 节点块，以及产生这些节点块的那一轮的成功结果。
        """
        if session is None:
            async with aiohttp.ClientSession() as own_session:
                return await self.collect(sources, own_session)

        for fetch_round in plan_rounds(self.settings, sources):
            outcomes = await fetch_all(session, fetch_round, self.settings.fetch_timeout)
            results: List[FetchResult] = [o for o in outcomes if isinstance(o, FetchResult)]

            blocks: List[str] = []
            for result in results:
                found = split_into_node_blocks(result.raw_text)
                logger.info(f"从 {result.source_url} 提取到 {len(found)} 个节点块。")
                blocks.extend(found)

            if blocks:
                logger.info(f"[{fetch_round.label}] 共获得 {len(blocks)} 个节点块，停止尝试其他后端。")
                return blocks, results
            logger.warning(f"[{fetch_round.label}] 没有获得任何节点，尝试下一个。")

        return [], []

    def finalize(self, blocks: Sequence[str]) -> List[NodeRecord]:
        """清洗节点块，并按 empty_policy 处理没有节点剩下的情况。"""
        records = self.normalizer.normalize(blocks)
        if records:
            return records
        if self.settings.empty_policy == "placeholder":
            logger.warning("过滤后没有可用节点，输出占位节点。")
            return [make_placeholder()]
        raise AggregationError("错误：过滤后没有剩余可用节点，请检查订阅内容或排除关键字。")

    async def build(self, sources: Sequence[str],
                    session: Optional[aiohttp.ClientSession] = None) -> AggregatedConfig:
        """
        异步函数：生成完整的配置。
        Args:
            sources (Sequence[str]): 订阅地址。
            session (Optional[aiohttp.ClientSession]): 可选的外部会话。
        Returns:
            AggregatedConfig: 配置文本、流量响应头和节点数。
        Raises:
            AggregationError: 所有后端都没有拿到节点，或过滤后没有节点（error 策略）。
        """
        blocks, results = await self.collect(sources, session)
        if not blocks:
            raise AggregationError("错误：所有后端均无法获取节点，请检查订阅链接是否有效。")

        records = self.finalize(blocks)
        summary = fold_usage(results)
        names = [r.display_name for r in records]
        buckets = classify(names)

        document = render_config(
            format_usage_comment(summary, self.settings.header_tag),
            [r.raw_block for r in records],
            names,
            buckets,
        )
        logger.info(f"配置生成完成：{len(records)} 个节点，{summary.subscription_count} 个订阅。")
        return AggregatedConfig(document, format_userinfo_header(summary), len(records))
