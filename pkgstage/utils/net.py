"""网络工具 — URI 协议解析与 URL 安全校验"""

from __future__ import annotations

from urllib.parse import urlparse

from pkgstage.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https", "ftp"))


def get_uri_scheme(uri: str) -> str:
    """取 URI 的协议前缀（'git://host/x' → 'git'），无 '://' 时返回空串"""
    uri = uri.strip()
    if "://" not in uri:
        return ""
    return uri.split("://", 1)[0].lower()


def strip_uri_scheme(uri: str) -> str:
    """去掉协议前缀（'scp://host:/p' → 'host:/p'）"""
    uri = uri.strip()
    if "://" not in uri:
        return uri
    return uri.split("://", 1)[1]


def split_domain(location: str) -> tuple[str, str]:
    """拆分 scp 风格地址 'user@host:/path' → ('user@host', '/path')"""
    location = strip_uri_scheme(location)
    if ":" not in location:
        return "", location
    domain, path = location.split(":", 1)
    return domain, path


def join_url(base: str, filename: str) -> str:
    """拼接站点与文件名，避免出现双斜杠"""
    return f"{base.rstrip('/')}/{filename}"


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验归档下载 URL 仅使用 http/https/ftp

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https/ftp: {url}"
        )
