# config.py

import os
import re
import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple

import yaml # 可选的 YAML 配置文件

logger = logging.getLogger(__name__)

# --- Subscription Configuration ---
# 订阅地址列表的原始文本，多个地址之间用换行、逗号或分号分隔。
# 一般通过环境变量 SUB_URLS 提供，这里留空。
SUB_URLS = ""

# --- Backend Configuration ---
# 订阅转换后端，按优先级依次尝试。
# 选用对新协议（hy2, vless）支持较好的后端。
BACKEND_URLS = [
    "https://api.wcc.best/sub",
    "https://subconverter.speedupvpn.com/sub",
    "https://sub.yorun.me/sub",
    "https://api.dler.io/sub",
    "https://subconv.is-sb.com/sub",
    "https://sub.id9.cc/sub",
]

# 传给转换后端的固定参数（订阅地址本身以 url 参数追加）。
# ver=meta 让后端保留 Hysteria/VLESS 节点，list=true 只返回节点列表。
BACKEND_PARAMS = [
    ("target", "clash"),
    ("ver", "meta"),
    ("list", "true"),
    ("emoji", "true"),
    ("udp", "true"),
    ("insert", "false"),
]

# 请求转换后端时模拟 Meta 客户端
USER_AGENT = "Clash.Meta/1.18.0"

# 直接请求订阅地址时使用的通用 User-Agent
DIRECT_USER_AGENT = "clash-verge/v1.7.7"

# 抓取模式：backend（只走转换后端）、direct（直接请求订阅）、auto（后端全部失败后直连）
FETCH_MODE = "backend"
FETCH_MODES = ("backend", "direct", "auto")

# 单个请求的超时时间（秒）
FETCH_TIMEOUT = 30

# --- Normalizer Configuration ---
# 名称包含以下关键字的节点会被过滤（不区分大小写）
EXCLUDE_KEYWORDS = [
    "5x", "10x", "x5", "x10",
    "到期", "剩余", "流量", "太旧", "过期", "时间", "重置",
    "试用", "赠送", "限速", "低速",
    "群", "官网", "客服", "网站", "更新", "通知",
]

# 重名节点的后缀风格：underscore -> "name_1"，bracket -> "name [1]"
DUPLICATE_SUFFIX = "underscore"
DUPLICATE_SUFFIXES = ("underscore", "bracket")

# 过滤后没有节点时的处理：error 返回错误，placeholder 输出一个占位节点
EMPTY_POLICY = "error"
EMPTY_POLICIES = ("error", "placeholder")

# --- Output Configuration ---
# 下载时的文件名
CONFIG_FILENAME = "clash_config.yaml"

# 流量注释行末尾的标签
HEADER_TAG = "双端通用满血版"

# --- Server Configuration ---
HOST = "0.0.0.0"
PORT = 8080
LOG_LEVEL = "INFO"

# 访问令牌，设置后请求必须带上 ?token=...
ACCESS_TOKEN = None

_SPLIT_PATTERN = re.compile(r"[\n,;]+")


class ConfigurationError(Exception):
    """配置缺失或无效。"""


def split_subscription_urls(raw: Optional[str]) -> List[str]:
    """
    把原始订阅文本拆分成地址列表。
    Args:
        raw (Optional[str]): 换行、逗号或分号分隔的订阅地址。
    Returns:
        List[str]: 去掉空白项后的订阅地址。
    """
    if not raw:
        return []
    return [part.strip() for part in _SPLIT_PATTERN.split(raw) if part.strip()]


class Settings(NamedTuple):
    """
    一次运行所需的全部配置，创建后不可修改，显式传给各个组件。
    """
    sub_urls: str = SUB_URLS
    backend_urls: Tuple[str, ...] = tuple(BACKEND_URLS)
    backend_params: Tuple[Tuple[str, str], ...] = tuple(BACKEND_PARAMS)
    user_agent: str = USER_AGENT
    direct_user_agent: str = DIRECT_USER_AGENT
    fetch_mode: str = FETCH_MODE
    fetch_timeout: float = FETCH_TIMEOUT
    exclude_keywords: Tuple[str, ...] = tuple(EXCLUDE_KEYWORDS)
    duplicate_suffix: str = DUPLICATE_SUFFIX
    empty_policy: str = EMPTY_POLICY
    filename: str = CONFIG_FILENAME
    header_tag: str = HEADER_TAG
    access_token: Optional[str] = ACCESS_TOKEN
    host: str = HOST
    port: int = PORT
    log_level: str = LOG_LEVEL

    @property
    def subscription_urls(self) -> List[str]:
        # 每次访问都重新解析，保证每个请求拿到的是新列表
        return split_subscription_urls(self.sub_urls)


# 环境变量名 -> 字段名
_ENV_FIELDS = {
    "SUB_URLS": "sub_urls",
    "ACCESS_TOKEN": "access_token",
    "FETCH_MODE": "fetch_mode",
    "FETCH_TIMEOUT": "fetch_timeout",
    "EMPTY_POLICY": "empty_policy",
    "DUPLICATE_SUFFIX": "duplicate_suffix",
    "CONFIG_FILENAME": "filename",
    "HOST": "host",
    "PORT": "port",
    "LOG_LEVEL": "log_level",
}


def _load_settings_file(path: str) -> Dict[str, Any]:
    """读取 YAML 配置文件，返回字段字典。"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"无法读取配置文件 {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"配置文件 {path} 的顶层必须是映射")

    unknown = set(data) - set(Settings._fields)
    if unknown:
        raise ConfigurationError(f"配置文件 {path} 包含未知字段: {', '.join(sorted(unknown))}")

    # YAML 里的订阅列表可以直接写成数组
    if isinstance(data.get('sub_urls'), list):
        data['sub_urls'] = "\n".join(str(u) for u in data['sub_urls'])
    return data


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """把字符串或列表形式的值转换成 Settings 需要的类型，并校验取值范围。"""
    result = dict(values)
    try:
        if 'fetch_timeout' in result:
            result['fetch_timeout'] = float(result['fetch_timeout'])
        if 'port' in result:
            result['port'] = int(result['port'])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"数值配置无效: {e}") from e

    for key in ('backend_urls', 'exclude_keywords'):
        if key in result:
            value = result[key]
            if isinstance(value, str):
                value = split_subscription_urls(value)
            result[key] = tuple(str(v) for v in value)

    if 'backend_params' in result:
        params = result['backend_params']
        if isinstance(params, dict):
            params = params.items()
        result['backend_params'] = tuple((str(k), str(v)) for k, v in params)

    if 'access_token' in result:
        token = result['access_token']
        result['access_token'] = str(token) if token not in (None, "") else None

    checks = (
        ('fetch_mode', FETCH_MODES),
        ('empty_policy', EMPTY_POLICIES),
        ('duplicate_suffix', DUPLICATE_SUFFIXES),
    )
    for key, allowed in checks:
        if key in result and result[key] not in allowed:
            raise ConfigurationError(f"{key} 只能是 {', '.join(allowed)}，当前为 {result[key]!r}")

    if 'fetch_timeout' in result and result['fetch_timeout'] <= 0:
        raise ConfigurationError("fetch_timeout 必须大于 0")
    return result


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    按 默认值 < YAML 配置文件 < 环境变量 的优先级构建配置。
    Args:
        environ (Optional[Mapping[str, str]]): 环境变量，默认为 os.environ。
    Returns:
        Settings: 不可变的配置对象。
    """
    if environ is None:
        environ = os.environ

    values: Dict[str, Any] = {}
    settings_file = environ.get('SETTINGS_FILE')
    if settings_file:
        values.update(_load_settings_file(settings_file))
        logger.info(f"已加载配置文件: {settings_file}")

    for env_name, field in _ENV_FIELDS.items():
        if env_name in environ:
            values[field] = environ[env_name]

    return Settings(**_coerce(values))
