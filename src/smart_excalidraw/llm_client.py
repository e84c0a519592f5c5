import base64
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .config import ProviderConfig, is_config_valid
from .errors import ConfigError, ImageUploadError, ProviderHTTPError, StreamError, TransportFailure

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, Any]

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 8192
MAX_IMAGE_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class ImageInput:
    data: str
    mime_type: str
    name: str = ""
    size: int = 0

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def validate_image_upload(filename: str, content_bytes: bytes, mime_type: str) -> ImageInput:
    mime = (mime_type or "").strip().lower()
    if not mime.startswith("image/"):
        raise ImageUploadError("请上传图片文件")
    if not content_bytes:
        raise ImageUploadError("图片内容为空")
    if len(content_bytes) > MAX_IMAGE_BYTES:
        raise ImageUploadError("图片大小不能超过 10MB")
    return ImageInput(
        data=base64.b64encode(content_bytes).decode("ascii"),
        mime_type=mime,
        name=filename or "",
        size=len(content_bytes),
    )


def build_user_message(provider_type: str, text: str, image: Optional[ImageInput] = None) -> ChatMessage:
    if image is None:
        return {"role": "user", "content": text}
    if provider_type == "anthropic":
        content = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.data},
            },
            {"type": "text", "text": text},
        ]
    else:
        content = [
            {"type": "text", "text": text},
            {"type": "image_url", "image_url": {"url": image.data_url}},
        ]
    return {"role": "user", "content": content}


def iter_sse_payloads(lines: Iterable[Any]) -> Iterator[Dict[str, Any]]:
    for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if data == "[DONE]":
            return
        if not data:
            continue
        try:
            payload = json.loads(data)
        except ValueError:
            logger.debug("Skipping unparseable SSE line: %r", data[:120])
            continue
        if isinstance(payload, dict):
            yield payload


def extract_chunk_text(payload: Dict[str, Any]) -> Optional[str]:
    if payload.get("type") == "error" or payload.get("error"):
        raise StreamError(_error_text(payload.get("error")) or "模型返回了错误")

    content = payload.get("content")
    if isinstance(content, str):
        return content

    if payload.get("type") == "content_block_delta":
        delta = payload.get("delta") or {}
        return delta.get("text") if isinstance(delta, dict) else None

    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        delta = choices[0].get("delta") or {}
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
    return None


class StreamingLLMClient:
    def __init__(
        self,
        provider: ProviderConfig,
        timeout_seconds: int = 120,
        opener: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self._opener = opener or urllib.request.urlopen

    def is_enabled(self) -> bool:
        return is_config_valid(self.provider)

    def build_request(
        self,
        messages: List[ChatMessage],
        system_prompt: str = "",
        temperature: float = 0.2,
        stream: bool = True,
    ) -> urllib.request.Request:
        if not self.is_enabled():
            raise ConfigError("请先配置您的 LLM 提供商")

        if self.provider.type == "anthropic":
            payload: Dict[str, Any] = {
                "model": self.provider.model,
                "max_tokens": ANTHROPIC_MAX_TOKENS,
                "temperature": temperature,
                "messages": messages,
                "stream": stream,
            }
            if system_prompt:
                payload["system"] = system_prompt
            url = f"{self.provider.base_url}/messages"
        else:
            chat = [{"role": "system", "content": system_prompt}] if system_prompt else []
            payload = {
                "model": self.provider.model,
                "temperature": temperature,
                "messages": chat + list(messages),
                "stream": stream,
            }
            url = f"{self.provider.base_url}/chat/completions"

        return urllib.request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers=self._headers(),
        )

    def stream_chat(
        self,
        messages: List[ChatMessage],
        system_prompt: str = "",
        temperature: float = 0.2,
    ) -> Iterator[str]:
        request = self.build_request(messages, system_prompt, temperature=temperature, stream=True)
        logger.info("Streaming from %s model %s", self.provider.type, self.provider.model)
        started = time.perf_counter()
        total_chars = 0
        received = False
        try:
            with self._opener(request, timeout=self.timeout_seconds) as response:
                for payload in iter_sse_payloads(response):
                    received = True
                    if payload.get("type") == "message_stop":
                        break
                    text = extract_chunk_text(payload)
                    if text:
                        total_chars += len(text)
                        yield text
        except urllib.error.HTTPError as exc:
            raise _http_error(exc) from exc
        except (urllib.error.URLError, OSError) as exc:
            if received:
                logger.warning("Stream interrupted after %d chars: %s", total_chars, exc)
                raise StreamError(f"流式响应中断：{exc}") from exc
            raise TransportFailure(str(exc)) from exc
        logger.info(
            "Stream complete: %d chars in %.0fms", total_chars, (time.perf_counter() - started) * 1000
        )

    def complete_text(
        self,
        messages: List[ChatMessage],
        system_prompt: str = "",
        temperature: float = 0.2,
    ) -> str:
        return "".join(self.stream_chat(messages, system_prompt, temperature=temperature))

    def list_models(self) -> List[str]:
        if not (self.provider.base_url and self.provider.api_key):
            raise ConfigError("请先填写 API 地址和密钥")
        request = urllib.request.Request(
            url=f"{self.provider.base_url}/models",
            method="GET",
            headers=self._headers(),
        )
        try:
            with self._opener(request, timeout=self.timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise _http_error(exc) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise TransportFailure(str(exc)) from exc

        parsed = json.loads(raw)
        models = parsed.get("data", []) if isinstance(parsed, dict) else []
        return [str(model["id"]) for model in models if isinstance(model, dict) and model.get("id")]

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.provider.type == "anthropic":
            headers["x-api-key"] = self.provider.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {self.provider.api_key}"
        return headers


def _http_error(exc: urllib.error.HTTPError) -> ProviderHTTPError:
    detail = ""
    try:
        body = exc.read().decode("utf-8", errors="replace")
        parsed = json.loads(body)
        if isinstance(parsed, dict):
            detail = _error_text(parsed.get("error"))
    except (OSError, ValueError):
        detail = ""
    logger.warning("Provider rejected request with HTTP %s", exc.code)
    return ProviderHTTPError(exc.code, detail)


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message", "") or error.get("type", "")).strip()
    if error:
        return str(error).strip()
    return ""
