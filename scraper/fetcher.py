# scraper/fetcher.py

import asyncio
import aiohttp
import logging
from typing import Iterable, List, NamedTuple, Sequence, Tuple
from urllib.parse import urlencode

from config import Settings
from models.proxy_model import FetchError, FetchOutcome, FetchResult

# 获取当前模块的日志记录器
logger = logging.getLogger(__name__)

# 响应正文中至少要出现其中一个标记才算有效订阅
BODY_MARKERS = ("proxies:", "name:")

USERINFO_HEADER = "Subscription-Userinfo"


class FetchJob(NamedTuple):
    source_url: str  # 原始订阅地址
    fetch_url: str   # 实际请求的地址


class FetchRound(NamedTuple):
    """一轮抓取：同一个后端（或直连）下所有订阅的请求，并发执行。"""
    label: str
    jobs: Tuple[FetchJob, ...]
    user_agent: str


def build_backend_url(backend: str, source_url: str, params: Iterable[Tuple[str, str]]) -> str:
    """
    构造转换后端的请求地址。
    Args:
        backend (str): 后端地址，如 https://api.wcc.best/sub。
        source_url (str): 原始订阅地址。
        params (Iterable[Tuple[str, str]]): 固定的查询参数。
    Returns:
        str: 完整的请求地址，订阅地址作为 url 参数编码在其中。
    """
    query = list(params) + [("url", source_url)]
    separator = '&' if '?' in backend else '?'
    return f"{backend}{separator}{urlencode(query)}"


def plan_rounds(settings: Settings, sources: Sequence[str]) -> List[FetchRound]:
    """
    根据抓取模式生成按优先级排列的抓取轮次。
    Args:
        settings (Settings): 当前配置。
        sources (Sequence[str]): 订阅地址列表。
    Returns:
        List[FetchRound]: backend 模式每个后端一轮；direct 模式只有直连一轮；auto 模式后端之后再加直连一轮。
    """
    rounds: List[FetchRound] = []
    if settings.fetch_mode in ("backend", "auto"):
        for backend in settings.backend_urls:
            jobs = tuple(
                FetchJob(src, build_backend_url(backend, src, settings.backend_params))
                for src in sources
            )
            rounds.append(FetchRound(backend, jobs, settings.user_agent))
    if settings.fetch_mode in ("direct", "auto"):
        jobs = tuple(FetchJob(src, src) for src in sources)
        rounds.append(FetchRound("direct", jobs, settings.direct_user_agent))
    return rounds


async def fetch_subscription(session: aiohttp.ClientSession, job: FetchJob,
                             user_agent: str, timeout: float) -> FetchOutcome:
    """
    异步函数：抓取单个订阅。任何失败都转换成 FetchError 返回，不会抛出异常。
    Args:
        session (aiohttp.ClientSession): 复用的 HTTP 会话。
        job (FetchJob): 订阅地址和实际请求地址。
        user_agent (str): 请求头中的 User-Agent。
        timeout (float): 超时时间（秒）。
    Returns:
        FetchOutcome: 成功时为 FetchResult，否则为 FetchError。
    """
    def failed(reason: str) -> FetchError:
        logger.warning(f"抓取 {job.fetch_url} 失败: {reason}")
        return FetchError(job.source_url, job.fetch_url, reason)

    try:
        async with session.get(
            job.fetch_url,
            headers={"User-Agent": user_agent},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if not 200 <= response.status < 300: # 只接受 2xx
                return failed(f"状态码 {response.status}")
            text = await response.text()
            usage_header = response.headers.get(USERINFO_HEADER)
    except asyncio.TimeoutError:
        return failed(f"{timeout} 秒内没有响应")
    except aiohttp.ClientError as e:
        return failed(f"客户端错误: {e}")
    except UnicodeDecodeError as e:
        return failed(f"响应无法解码: {e}")

    if not any(marker in text for marker in BODY_MARKERS):
        return failed("响应中没有节点信息")

    logger.debug(f"成功抓取: {job.fetch_url}")
    return FetchResult(text, usage_header, job.source_url, job.fetch_url)


async def fetch_all(session: aiohttp.ClientSession, fetch_round: FetchRound,
                    timeout: float) -> List[FetchOutcome]:
    """
    异步函数：并发执行一轮中的所有请求，等待全部完成后逐个检查结果。
    Args:
        session (aiohttp.ClientSession): 复用的 HTTP 会话。
        fetch_round (FetchRound): 本轮的请求。
        timeout (float): 每个请求的超时时间（秒）。
    Returns:
        List[FetchOutcome]: 与 jobs 一一对应的结果。
    """
    tasks = [fetch_subscription(session, job, fetch_round.user_agent, timeout) for job in fetch_round.jobs]

    # return_exceptions=True 确保即使有任务失败，其他任务也会继续完成
    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: List[FetchOutcome] = []
    for job, result in zip(fetch_round.jobs, results):
        if isinstance(result, BaseException):
            # fetch_subscription 已经处理了可预期的错误，这里只兜住意外情况
            logger.error(f"抓取 {job.fetch_url} 时发生未知错误: {result!r}")
            outcomes.append(FetchError(job.source_url, job.fetch_url, repr(result)))
        else:
            outcomes.append(result)

    succeeded = sum(isinstance(o, FetchResult) for o in outcomes)
    logger.info(f"[{fetch_round.label}] 完成 {len(outcomes)} 个请求，成功 {succeeded} 个。")
    return outcomes
