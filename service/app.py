# service/app.py

import hmac
import logging

from aiohttp import web

from config import Settings
from service.aggregator import AggregationError, SubscriptionAggregator

logger = logging.getLogger(__name__)

SETTINGS_KEY = web.AppKey("settings", Settings)


async def health(request: web.Request) -> web.Response:
    """存活探针。"""
    return web.json_response({"status": "ok", "msg": "Clash Config Generator Active"})


def _token_ok(settings: Settings, request: web.Request) -> bool:
    if not settings.access_token:
        return True
    supplied = request.query.get("token", "")
    return hmac.compare_digest(supplied.encode('utf-8'), settings.access_token.encode('utf-8'))


async def subscription(request: web.Request) -> web.Response:
    """
    生成聚合后的配置文件。
    订阅地址缺失或所有后端失败时返回 500，令牌不匹配时返回 403。
    """
    settings = request.app[SETTINGS_KEY]

    if not _token_ok(settings, request):
        logger.warning(f"拒绝访问：令牌不匹配 ({request.remote})")
        return web.Response(status=403, text="Forbidden: invalid token")

    sources = settings.subscription_urls
    if not sources:
        logger.error("没有配置订阅地址。")
        return web.Response(status=500, text="配置错误：请在环境变量中设置 SUB_URLS。")

    try:
        result = await SubscriptionAggregator(settings).build(sources)
    except AggregationError as e:
        logger.error(f"生成配置失败: {e}")
        return web.Response(status=500, text=str(e))

    return web.Response(
        text=result.document,
        content_type="text/yaml",
        charset="utf-8",
        headers={
            "Subscription-Userinfo": result.userinfo,
            "Content-Disposition": f"attachment; filename={settings.filename}",
        },
    )


def create_app(settings: Settings) -> web.Application:
    """
    创建 aiohttp 应用。
    Args:
        settings (Settings): 当前配置，保存在应用上供处理函数读取。
    Returns:
        web.Application: 已注册 /health 和其余所有路径的应用。
    """
    app = web.Application()
    app[SETTINGS_KEY] = settings
    app.router.add_get("/health", health)
    app.router.add_get("/{tail:.*}", subscription)
    return app
