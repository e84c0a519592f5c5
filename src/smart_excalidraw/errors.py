from typing import Optional


class SmartExcalidrawError(RuntimeError):
    pass


class ExtractionError(SmartExcalidrawError, ValueError):
    kind = "extraction_error"


class NoArrayFoundError(ExtractionError):
    kind = "no_array_found"

    def __init__(self, message: str = "代码中未找到有效的 JSON 数组") -> None:
        super().__init__(message)


class MalformedJsonError(ExtractionError):
    kind = "malformed_json"

    def __init__(self, parser_message: str) -> None:
        self.parser_message = parser_message
        super().__init__(f"JSON 语法错误：{parser_message}")


class GenerationError(SmartExcalidrawError):
    kind = "generation_error"


class StreamError(GenerationError):
    kind = "stream_error"


class TransportFailure(GenerationError):
    kind = "transport_failure"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__("网络连接失败，请检查网络连接")


class ProviderHTTPError(GenerationError):
    kind = "http_error"

    def __init__(self, status: int, detail: str = "") -> None:
        self.status = status
        self.detail = detail
        super().__init__(http_error_message(status, detail))


class OptimizationError(SmartExcalidrawError):
    kind = "optimization_error"


class ConfigError(SmartExcalidrawError, ValueError):
    kind = "config_error"


class ProviderNotFoundError(ConfigError):
    kind = "provider_not_found"

    def __init__(self, provider_id: Optional[str]) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider not found: {provider_id}")


class HistoryError(SmartExcalidrawError, ValueError):
    kind = "history_error"


class ImageUploadError(SmartExcalidrawError, ValueError):
    kind = "image_upload_error"


def http_error_message(status: int, detail: str = "") -> str:
    if detail:
        return detail
    if status == 400:
        return "请求参数错误，请检查输入内容"
    if status in {401, 403}:
        return "API 密钥无效或权限不足，请检查配置"
    if status == 429:
        return "请求过于频繁，请稍后再试"
    if status in {500, 502, 503}:
        return "服务器错误，请稍后重试"
    return f"请求失败 ({status})"
