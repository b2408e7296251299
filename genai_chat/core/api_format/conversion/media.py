"""
媒体引用解析（MediaContent -> canonical URI / inline data）

发送请求前，MediaContent 中的引用（任意 scheme 的 URI）需要解析为 provider 可接受的形式：
- 已有内嵌字节：原样透传
- 否则依次询问 resolver 链（第一个命中者胜出），取得 blob 后写入 canonical store，
  把内容块改写为 canonical URI + 解析出的 MIME 类型
- 所有 resolver 都未命中：按 MediaMissingAction 处理（抛错 / 写入显式的空占位 blob）

解析是异步的（可能涉及网络/磁盘 I/O）；同一条消息内的多个媒体块并发解析，
结果按原始顺序回写。

Blob store 只通过 fetch/store 两个方法交互，核心层不持有存储生命周期。
"""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import ipaddress
import mimetypes
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urljoin, urlparse

import httpx

from genai_chat.config.settings import config
from genai_chat.core.api_format.conversion.field_mappings import EMPTY_BLOB_MIME_TYPE
from genai_chat.core.api_format.conversion.internal import (
    ContentPart,
    MediaContent,
    Message,
    MessageContent,
)
from genai_chat.core.exceptions import InvalidMediaContent, MediaResolutionFailed
from genai_chat.core.logger import logger
from genai_chat.core.metrics import media_resolution_total


@dataclass(frozen=True)
class MediaBlob:
    """带 MIME 类型的字节载荷"""

    data: bytes
    mime_type: str
    path: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return not self.data

    def encoded(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.encoded()}"

    @classmethod
    def empty(cls, path: str | None = None) -> MediaBlob:
        return cls(data=b"", mime_type=EMPTY_BLOB_MIME_TYPE, path=path)


class BlobMissingAction(str, Enum):
    """store 中找不到 path 时 fetch 的行为"""

    NONE = "none"  # 返回 None，交给下一个 resolver
    EMPTY_BLOB = "empty_blob"  # 返回空 blob（视为命中）


class InvalidPathAction(str, Enum):
    """写入的 path 不满足 path_prefix 时的处理方式"""

    IGNORE = "ignore"  # 原样使用
    PREFIX_PATH = "prefix_path"  # scheme://host/path -> <prefix>host/path


class MediaMissingAction(str, Enum):
    """所有 resolver 都未命中时 MediaManager 的处理方式"""

    ERROR = "error"
    EMPTY_BLOB = "empty_blob"


class BlobStore(ABC):
    """Blob 存储接口（外部能力，核心层只调用 fetch/store）"""

    @abstractmethod
    async def fetch(self, uri: str) -> MediaBlob | None:
        """按 URI 读取 blob，未找到返回 None"""
        raise NotImplementedError

    @abstractmethod
    async def store(self, blob: MediaBlob, *, path: str | None = None) -> str:
        """写入 blob，返回 canonical URI"""
        raise NotImplementedError


class InMemoryBlobStore(BlobStore):
    """基于 dict 的 blob 存储"""

    def __init__(
        self,
        *,
        path_prefix: str | None = None,
        invalid_path_action: InvalidPathAction = InvalidPathAction.IGNORE,
        missing_action: BlobMissingAction = BlobMissingAction.NONE,
    ) -> None:
        self.path_prefix = path_prefix
        self.invalid_path_action = invalid_path_action
        self.missing_action = missing_action
        self._blobs: dict[str, MediaBlob] = {}

    def __len__(self) -> int:
        return len(self._blobs)

    def canonical_path(self, path: str) -> str:
        if not self.path_prefix or path.startswith(self.path_prefix):
            return path
        if self.invalid_path_action == InvalidPathAction.PREFIX_PATH:
            rest = path.split("://", 1)[-1].lstrip("/")
            return f"{self.path_prefix}{rest}"
        return path

    async def fetch(self, uri: str) -> MediaBlob | None:
        blob = self._blobs.get(uri) or self._blobs.get(self.canonical_path(uri))
        if blob is not None:
            return blob
        if self.missing_action == BlobMissingAction.EMPTY_BLOB:
            return MediaBlob.empty(uri)
        return None

    async def store(self, blob: MediaBlob, *, path: str | None = None) -> str:
        key = path or blob.path
        if not key:
            raise ValueError("blob path is required to store a MediaBlob")
        canonical = self.canonical_path(key)
        self._blobs[canonical] = dataclasses.replace(blob, path=canonical)
        return canonical


class ReadThroughBlobStore(BlobStore):
    """别名存储 + canonical 存储

    store(): 写入 backing_store 得到 canonical URI，再在 base_store 中以原始 path 记录别名
    fetch(): 先查 base_store（别名），再查 backing_store（canonical）
    """

    def __init__(self, *, base_store: BlobStore, backing_store: BlobStore) -> None:
        self.base_store = base_store
        self.backing_store = backing_store

    async def fetch(self, uri: str) -> MediaBlob | None:
        blob = await self.base_store.fetch(uri)
        if blob is None:
            blob = await self.backing_store.fetch(uri)
        return blob

    async def store(self, blob: MediaBlob, *, path: str | None = None) -> str:
        canonical = await self.backing_store.store(blob, path=path)
        alias = path or blob.path
        if alias and alias != canonical:
            await self.base_store.store(blob, path=alias)
        return canonical


# =========================
# HTTP resolver
# =========================


def _is_private_ip(addr: str) -> bool:
    """检查 IP 地址是否为私有/内网地址。"""
    try:
        ip = ipaddress.ip_address(addr)
        return bool(ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved)
    except ValueError:
        return True


async def _host_is_public(hostname: str) -> bool:
    """DNS 解析并校验所有 IP 均为公网地址（SSRF 防护）。解析失败按拒绝处理。"""
    if not hostname:
        return False
    try:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
    except (socket.gaierror, OSError):
        return False
    addrs = [sockaddr[0] for *_rest, sockaddr in infos]
    return bool(addrs) and not any(_is_private_ip(a) for a in addrs)


def _peer_is_public(resp: httpx.Response) -> bool:
    """校验响应实际连接的对端 IP 是否为公网地址（防 DNS rebinding）。

    httpx 通过 extensions["network_stream"] 暴露底层连接；不可用时（如 MockTransport）跳过，
    依赖前置 DNS 校验。
    """
    network_stream = resp.extensions.get("network_stream")
    if network_stream is None:
        logger.debug("[HttpBlobResolver] network_stream 不可用, DNS rebinding 检测跳过")
        return True
    peername = network_stream.get_extra_info("peername")
    if peername is None:
        return True
    peer_ip = peername[0] if isinstance(peername, tuple) else str(peername)
    if _is_private_ip(peer_ip):
        logger.warning("[HttpBlobResolver] DNS rebinding 检测: 实际连接到私有 IP {}", peer_ip)
        return False
    return True


def _guess_media_type(url: str) -> str:
    """从 URL 路径猜测 MIME 类型。"""
    mt, _ = mimetypes.guess_type(url.split("?")[0])
    return mt or EMPTY_BLOB_MIME_TYPE


class HttpBlobResolver(BlobStore):
    """通过 HTTP(S) 下载媒体的只读 resolver

    - 非 http/https scheme 直接视为未命中
    - 每一跳重定向都校验目标地址（防止重定向到内网），连接建立后二次校验对端 IP
    - 流式读取：Content-Length 预检，累计字节超过 max_size 立即中止
    - 超过大小限制、下载失败时返回 None（由 MediaManager 的兜底策略决定后续行为）
    """

    _MAX_REDIRECTS = 5

    def __init__(
        self,
        *,
        timeout: float | None = None,
        max_size: int | None = None,
        block_private_networks: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else config.media_download_timeout
        self.max_size = max_size if max_size is not None else config.media_max_size
        self.block_private_networks = block_private_networks
        self._transport = transport

    async def _allowed(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return False
        if self.block_private_networks and not await _host_is_public(parsed.hostname or ""):
            logger.warning("[HttpBlobResolver] 拒绝下载私有网络地址: {}", url[:100])
            return False
        return True

    async def fetch(self, uri: str) -> MediaBlob | None:
        if not await self._allowed(uri):
            return None

        try:
            async with httpx.AsyncClient(
                follow_redirects=False,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            ) as client:
                current_url = uri
                for _ in range(self._MAX_REDIRECTS + 1):
                    async with client.stream("GET", current_url) as resp:
                        if self.block_private_networks and not _peer_is_public(resp):
                            return None

                        if resp.is_redirect:
                            location = resp.headers.get("location", "")
                            current_url = urljoin(current_url, location)
                            if not location or not await self._allowed(current_url):
                                return None
                            continue

                        resp.raise_for_status()

                        # 预检 Content-Length（如果有）
                        content_length = resp.headers.get("content-length")
                        if content_length and content_length.isdigit():
                            if int(content_length) > self.max_size:
                                logger.warning(
                                    "[HttpBlobResolver] Content-Length 超过大小限制 ({} > {}): {}",
                                    content_length,
                                    self.max_size,
                                    uri[:100],
                                )
                                return None

                        # 流式累计读取，超限立即中止
                        data = bytearray()
                        async for chunk in resp.aiter_bytes():
                            data.extend(chunk)
                            if len(data) > self.max_size:
                                logger.warning(
                                    "[HttpBlobResolver] 文件超过大小限制 ({} bytes > {}): {}",
                                    len(data),
                                    self.max_size,
                                    uri[:100],
                                )
                                return None

                        content_type = resp.headers.get("content-type", "")
                        media_type = content_type.split(";")[0].strip().lower()
                        blob = MediaBlob(
                            data=bytes(data),
                            mime_type=media_type or _guess_media_type(current_url),
                            path=uri,
                        )
                        logger.debug(
                            "[HttpBlobResolver] 下载完成 ({} bytes, {}): {}",
                            blob.size,
                            blob.mime_type,
                            uri[:100],
                        )
                        return blob
        except httpx.HTTPError as e:
            logger.warning("[HttpBlobResolver] 下载文件失败: {} - {}", uri[:100], e)
            return None

        logger.warning("[HttpBlobResolver] 超过最大重定向次数: {}", uri[:100])
        return None

    async def store(self, blob: MediaBlob, *, path: str | None = None) -> str:
        raise NotImplementedError("HttpBlobResolver is read-only")


# =========================
# MediaManager
# =========================


class MediaManager:
    """媒体解析入口

    store:          canonical 存储（解析结果写入此处，返回 canonical URI）
    resolvers:      按顺序查询的 resolver 链
    missing_action: 全部未命中时的兜底策略
    """

    def __init__(
        self,
        *,
        store: BlobStore,
        resolvers: list[BlobStore] | None = None,
        missing_action: MediaMissingAction | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self.store = store
        self.resolvers = list(resolvers or [])
        self.missing_action = (
            missing_action
            if missing_action is not None
            else MediaMissingAction(config.media_missing_action)
        )
        self.max_concurrency = max_concurrency or config.media_max_concurrency

    async def _lookup(self, uri: str) -> MediaBlob | None:
        for resolver in self.resolvers:
            blob = await resolver.fetch(uri)
            if blob is not None:
                return blob
        return None

    async def resolve_part(self, part: ContentPart) -> ContentPart:
        """解析单个内容块；非 MediaContent 原样返回"""
        if not isinstance(part, MediaContent):
            return part

        if part.is_inline:
            media_resolution_total.labels("passthrough").inc()
            return part

        uri = part.file_uri
        if not uri:
            raise InvalidMediaContent(
                "Invalid media content: media part has no fileUri to resolve", part=part
            )

        blob = await self._lookup(uri)
        outcome = "resolved"
        if blob is None:
            if self.missing_action == MediaMissingAction.ERROR:
                media_resolution_total.labels("failed").inc()
                logger.warning("[MediaManager] 无法解析媒体引用: {}", uri[:100])
                raise MediaResolutionFailed(uri)
            logger.debug("[MediaManager] 媒体引用未命中，使用空占位 blob: {}", uri[:100])
            blob = MediaBlob.empty(uri)
            outcome = "empty_blob"

        canonical_uri = await self.store.store(blob, path=uri)
        media_resolution_total.labels(outcome).inc()
        return MediaContent(
            file_uri=canonical_uri,
            mime_type=blob.mime_type or part.mime_type,
            resolved=True,
        )

    async def resolve_content(self, content: MessageContent) -> MessageContent:
        """并发解析内容中的所有媒体块，结果保持原始顺序"""
        if isinstance(content, str):
            return content
        if not any(isinstance(p, MediaContent) for p in content):
            return content

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(part: ContentPart) -> ContentPart:
            async with semaphore:
                return await self.resolve_part(part)

        resolved = await asyncio.gather(*(_bounded(p) for p in content))
        return list(resolved)

    async def resolve_messages(self, messages: list[Message]) -> list[Message]:
        """返回新的消息列表（原消息不修改）"""
        out: list[Message] = []
        for message in messages:
            resolved = await self.resolve_content(message.content)
            if resolved is message.content:
                out.append(message)
            else:
                out.append(dataclasses.replace(message, content=resolved))
        return out


__all__ = [
    "MediaBlob",
    "BlobMissingAction",
    "InvalidPathAction",
    "MediaMissingAction",
    "BlobStore",
    "InMemoryBlobStore",
    "ReadThroughBlobStore",
    "HttpBlobResolver",
    "MediaManager",
]
