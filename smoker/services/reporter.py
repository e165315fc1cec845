"""冒烟报告上传

以 multipart/form-data 把报告归档 POST 到 Chimps 服务端:
    upload=1, version=1, archive_file=<tar.gz>
服务端响应正文以 "ok" 开头视为成功，否则正文即错误信息。
"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
import uuid
from pathlib import Path

from smoker import __version__
from smoker.core.exceptions import ReportError
from smoker.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

# 上传协议版本（与客户端版本无关）
PROTOCOL_VERSION = "1"


def encode_multipart(
    fields: dict[str, str], files: dict[str, Path],
) -> tuple[bytes, str]:
    """编码 multipart/form-data 请求体，返回 (body, content_type)"""
    boundary = f"----chimps-{uuid.uuid4().hex}"
    parts: list[bytes] = []
    for name, value in fields.items():
        parts.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n".encode()
        )
    for name, path in files.items():
        parts.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"; '
            f'filename="{path.name}"\r\n'
            "Content-Type: application/x-gzip\r\n\r\n".encode()
        )
        parts.append(path.read_bytes())
        parts.append(b"\r\n")
    parts.append(f"--{boundary}--\r\n".encode())
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


class ReportSender:
    """报告上传器"""

    def __init__(self, server: str, *, timeout: int = 300) -> None:
        validate_url_scheme(server, context="report server")
        self.server = server
        self.timeout = timeout

    def send(self, archive: Path) -> tuple[bool, str]:
        """上传归档，返回 (是否成功, 服务端消息)

        Raises:
            ReportError: 归档文件不可读
        """
        try:
            body, content_type = encode_multipart(
                {"upload": "1", "version": PROTOCOL_VERSION},
                {"archive_file": Path(archive)},
            )
        except OSError as e:
            raise ReportError(f"无法读取报告归档 {archive}: {e}") from e

        req = urllib.request.Request(
            self.server, data=body, method="POST",
            headers={
                "Content-Type": content_type,
                "User-Agent": f"chimps-smoker/{__version__}",
            },
        )
        logger.info("上传冒烟报告到 %s (%d 字节)", self.server, len(body))
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                text = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            return False, f"HTTP 错误 {e.code}: {e.reason}"
        except urllib.error.URLError as e:
            return False, f"网络错误: {e.reason}"
        except OSError as e:
            return False, str(e)

        if text.startswith("ok"):
            return True, ""
        return False, text.strip()
