"""网络工具 - URL 校验、HTTP 读取、文件下载、重试"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import socket
import tempfile
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, TypeVar
from urllib.parse import urlparse

from cpppm import __version__
from cpppm.core.exceptions import NetworkError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ALLOWED_SCHEMES = frozenset(("http", "https"))
_USER_AGENT = f"cpppm/{__version__}"
_CHUNK = 64 * 1024


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def _request(url: str) -> urllib.request.Request:
    return urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})


def http_get(url: str, *, timeout: float = 30.0) -> bytes:
    """GET 请求并返回响应体

    Raises:
        NetworkError: 连接失败、超时或 HTTP 错误状态（status 字段记录状态码）
    """
    validate_url_scheme(url, context="http get")
    try:
        with urllib.request.urlopen(_request(url), timeout=timeout) as resp:  # nosec B310
            return resp.read()
    except urllib.error.HTTPError as e:
        raise NetworkError(f"HTTP {e.code}: {url}", status=e.code) from e
    except (urllib.error.URLError, socket.timeout, OSError) as e:
        raise NetworkError(f"请求失败: {url} - {e}") from e


def download_file(url: str, dest: Path, *, timeout: float = 30.0) -> Path:
    """流式下载到 dest，先写临时文件，完成后再 rename

    Raises:
        NetworkError: 下载失败（不会留下不完整的 dest）
    """
    validate_url_scheme(url, context=f"download {dest.name}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(dest.parent), suffix=".part")
    try:
        with os.fdopen(fd, "wb") as out, \
                urllib.request.urlopen(_request(url), timeout=timeout) as resp:  # nosec B310
            shutil.copyfileobj(resp, out, _CHUNK)
        os.replace(tmp, str(dest))
    except urllib.error.HTTPError as e:
        Path(tmp).unlink(missing_ok=True)
        raise NetworkError(f"下载失败: {url} - HTTP {e.code}", status=e.code) from e
    except (urllib.error.URLError, socket.timeout, OSError) as e:
        Path(tmp).unlink(missing_ok=True)
        raise NetworkError(f"下载失败: {url} - {e}") from e
    return dest


def sha256_file(path: Path) -> str:
    """计算文件 sha256 十六进制摘要"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def with_retries(
    func: Callable[[], T], *,
    retries: int = 0,
    backoff: float = 0.5,
    label: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """执行 func，遇到可重试的 NetworkError 时最多重试 retries 次

    第 n 次重试前等待 backoff * n 秒。不可重试的错误（如 4xx）直接抛出。
    """
    attempt = 0
    while True:
        try:
            return func()
        except NetworkError as e:
            if not e.retryable or attempt >= retries:
                raise
            attempt += 1
            logger.warning("%s 失败，第 %d/%d 次重试: %s", label, attempt, retries, e)
            sleep(backoff * attempt)
