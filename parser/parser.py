# parser/parser.py

import re
import json
import logging
from typing import List, NamedTuple, Optional

import yaml

# 获取当前模块的日志记录器
logger = logging.getLogger(__name__)

# 顶层的 proxies: 段落标题
_SECTION_HEADER = re.compile(r'^proxies\s*:\s*(#.*)?$')
# 任意顶层键（第 0 列、不是列表项或注释），标志着上一个段落的结束
_TOP_LEVEL_KEY = re.compile(r'^[^\s#\-][^:]*:')
# 列表项标记行，捕获其缩进
_LIST_MARKER = re.compile(r'^(\s*)-(\s|$)')
# name 键：不能是 servername、obfs-name 之类键名的一部分
_NAME_KEY = re.compile(r'(?<![\w-])name[ \t]*:[ \t]*')
# 取值的几种写法
_DOUBLE_QUOTED = re.compile(r'"((?:[^"\\\n]|\\.)*)"')
_SINGLE_QUOTED = re.compile(r"'((?:[^'\n]|'')*)'")
_FLOW_PLAIN = re.compile(r'[^,}\n]+')      # 花括号内：到逗号或右花括号为止
_BLOCK_PLAIN = re.compile(r'[^\n]+')       # 块格式：到行尾为止
_TRAILING_COMMENT = re.compile(r'[ \t]+#.*$')


class NameField(NamedTuple):
    """节点块中 name 字段的位置和解码后的值。"""
    start: int
    end: int
    value: str


def _in_flow_mapping(block: str, pos: int) -> bool:
    """pos 之前是否有尚未闭合的 {。"""
    prefix = block[:pos]
    return prefix.count('{') > prefix.count('}')


def _unescape_double_quoted(raw: str) -> str:
    try:
        return yaml.safe_load(f'"{raw}"')
    except yaml.YAMLError:
        logger.debug(f"无法解码双引号名称，按原文使用: {raw}")
        return raw


def find_name_field(block: str) -> Optional[NameField]:
    """
    定位节点块中第一个 name 字段。
    花括号内的裸值到逗号或右花括号为止；块格式的裸值到行尾为止，并去掉行尾注释。
    Args:
        block (str): 节点文本块。
    Returns:
        Optional[NameField]: 字段的起止位置（含键名）和解码后的值；找不到时返回 None。
    """
    for key in _NAME_KEY.finditer(block):
        pos = key.end()
        match = _DOUBLE_QUOTED.match(block, pos)
        if match:
            return NameField(key.start(), match.end(), _unescape_double_quoted(match.group(1)))
        match = _SINGLE_QUOTED.match(block, pos)
        if match:
            return NameField(key.start(), match.end(), match.group(1).replace("''", "'"))

        plain = _FLOW_PLAIN if _in_flow_mapping(block, key.start()) else _BLOCK_PLAIN
        match = plain.match(block, pos)
        if not match:
            continue
        value = _TRAILING_COMMENT.sub('', match.group(0)).rstrip()
        if not value or value[0] in '"\'': # 未闭合的引号
            continue
        return NameField(key.start(), pos + len(value), value)
    return None


def find_proxy_section(text: str) -> Optional[List[str]]:
    """
    找到 proxies: 段落，返回标题之后直到下一个顶层段落之前的所有行。
    Args:
        text (str): 订阅响应的原始文本。
    Returns:
        Optional[List[str]]: 段落内的行；没有 proxies: 段落时返回 None。
    """
    lines = text.replace('\r\n', '\n').replace('\r', '\n').split('\n')
    start = None
    for i, line in enumerate(lines):
        if _SECTION_HEADER.match(line):
            start = i + 1
            break
    if start is None:
        return None

    section = []
    for line in lines[start:]:
        if _TOP_LEVEL_KEY.match(line): # proxy-groups:、rules:、dns: 等
            break
        section.append(line)
    return section


def split_into_node_blocks(text: str) -> List[str]:
    """
    把 proxies: 段落按列表项标记切分成节点文本块。
    第一个列表项的缩进决定节点边界：每块从一个标记行开始，
    到下一个同缩进的标记行之前结束，多行参数不会被截断，也不会混进下一个节点。
    Args:
        text (str): 订阅响应的原始文本。
    Returns:
        List[str]: 含有 name 字段的节点文本块，顺序与原文一致。
    """
    section = find_proxy_section(text)
    if section is None:
        logger.debug("响应中没有找到 proxies: 段落。")
        return []

    marker_indent = None
    chunks: List[List[str]] = []
    for line in section:
        match = _LIST_MARKER.match(line)
        if match and (marker_indent is None or len(match.group(1)) == marker_indent):
            marker_indent = len(match.group(1))
            chunks.append([line])
        elif chunks:
            chunks[-1].append(line)
        # 第一个标记之前的行（空行、注释）直接忽略

    blocks = []
    for chunk in chunks:
        while chunk and not chunk[-1].strip(): # 去掉尾部空行
            chunk.pop()
        block = '\n'.join(chunk)
        if find_name_field(block) is not None:
            blocks.append(block)
        else:
            logger.debug(f"跳过没有 name 字段的节点块: {block[:50]}")
    return blocks


def extract_name(block: str) -> Optional[str]:
    """
    提取节点块中第一个 name 字段的值。
    Args:
        block (str): 节点文本块。
    Returns:
        Optional[str]: 解码并去掉首尾空白后的名称；找不到时返回 None。
    """
    field = find_name_field(block)
    if field is None:
        return None
    return field.value.strip()


def quote_name(name: str) -> str:
    """双引号包裹名称，JSON 字符串同时也是合法的 YAML 双引号标量。"""
    return json.dumps(name, ensure_ascii=False)


def replace_name(block: str, new_name: str) -> str:
    """
    只改写第一个 name 字段，其余内容保持原样。
    Args:
        block (str): 节点文本块。
        new_name (str): 新名称。
    Returns:
        str: 改写后的节点文本块。
    """
    field = find_name_field(block)
    if field is None:
        return block
    return f"{block[:field.start]}name: {quote_name(new_name)}{block[field.end:]}"


def reindent_block(block: str, indent: str = "  ") -> str:
    """
    去掉节点块标记行自身的缩进，再统一加上目标缩进，保持各行之间的相对缩进不变。
    Args:
        block (str): 节点文本块，第一行为列表项标记行。
        indent (str): 目标缩进。
    Returns:
        str: 重新缩进后的节点文本块。
    """
    lines = block.split('\n')
    match = _LIST_MARKER.match(lines[0])
    base = len(match.group(1)) if match else len(lines[0]) - len(lines[0].lstrip())

    result = []
    for line in lines:
        if not line.strip():
            result.append('')
            continue
        leading = len(line) - len(line.lstrip(' \t'))
        result.append(indent + line[min(base, leading):])
    return '\n'.join(result)
