"""名称规范化工具

包名 → 变量前缀、版本号 → 路径安全形式、依赖 → host 形式，
描述解析的各个环节都依赖这几个纯函数。
"""

from __future__ import annotations

import string

HOST_PREFIX = "host-"

_UPPER_TABLE = str.maketrans(
    string.ascii_lowercase + ".-",
    string.ascii_uppercase + "__",
)


def uppercase(name: str) -> str:
    """小写 ASCII 字母转大写，'.' 与 '-' 转 '_'，其余字符不变

    >>> uppercase("my-pkg.sub")
    'MY_PKG_SUB'
    """
    return name.translate(_UPPER_TABLE)


def sanitize_version(version: str) -> str:
    """版本号中的 '/'（分支/标签路径）替换为 '_'，用于所有目录和文件名

    >>> sanitize_version("remotes/origin/1_10_stable")
    'remotes_origin_1_10_stable'
    """
    return version.replace("/", "_")


def raw_name(name: str) -> str:
    """去掉 host- 前缀得到原始包名"""
    return name[len(HOST_PREFIX):] if name.startswith(HOST_PREFIX) else name


def hostify(dependency: str) -> str:
    """依赖改写为 host 版本，host-host- 折叠为单个 host-"""
    name = HOST_PREFIX + dependency
    while name.startswith(HOST_PREFIX + HOST_PREFIX):
        name = name[len(HOST_PREFIX):]
    return name


def hostify_dependencies(dependencies: list[str]) -> list[str]:
    """批量改写依赖，保持顺序并去重"""
    result: list[str] = []
    for dep in dependencies:
        host_dep = hostify(dep)
        if host_dep not in result:
            result.append(host_dep)
    return result


def find_collisions(names: list[str]) -> dict[str, list[str]]:
    """找出规范化后相同的不同包名（'a-b' 与 'a.b' 都得到 'A_B'）"""
    seen: dict[str, list[str]] = {}
    for name in names:
        seen.setdefault(uppercase(name), []).append(name)
    return {k: v for k, v in seen.items() if len(set(v)) > 1}
