# main.py

import logging

from aiohttp import web

from config import ConfigurationError, load_settings # 导入 config.py
from service.app import create_app # 从 service/app.py 导入


def main():
    """
    读取配置、初始化日志并启动 HTTP 服务。
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"配置无效: {e}")
        raise SystemExit(1)

    # 配置日志
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    sources = settings.subscription_urls
    if not sources:
        logging.warning("没有配置 SUB_URLS，请求将返回 500。")
    logging.info(f"已配置 {len(sources)} 个订阅，抓取模式: {settings.fetch_mode}")
    logging.info(f"服务启动于 http://{settings.host}:{settings.port}")

    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    main()
