"""Synquer 异常体系

投递失败永远不应中断宿主应用：除 ConfigurationError 外，
这些异常只在 SDK 内部流转，并通过 on_error 回调上报。
"""


class SynquerError(Exception):
    """Synquer 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class ConfigurationError(SynquerError):
    """配置错误（缺少 api_key、参数非法等），构造时同步抛出"""

    def __init__(self, message: str) -> None:
        super().__init__(f"Synquer: {message}", recoverable=False)


class DeliveryError(SynquerError):
    """事件投递失败基类"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 1,
        recoverable: bool = True,
    ) -> None:
        """
        Args:
            message: 错误描述
            status_code: HTTP 状态码，网络层异常时为 None
            attempts: 已执行的请求次数
            recoverable: 是否可重试
        """
        super().__init__(message, recoverable=recoverable)
        self.status_code = status_code
        self.attempts = attempts


class TerminalDeliveryError(DeliveryError):
    """不可重试的投递失败（400 请求非法 / 401 凭证无效）"""

    def __init__(self, status_code: int, detail: str, attempts: int = 1) -> None:
        super().__init__(
            f"Synquer API error {status_code}: {detail}",
            status_code=status_code,
            attempts=attempts,
            recoverable=False,
        )
        self.detail = detail


class RetryableDeliveryError(DeliveryError):
    """单次请求的可重试失败（5xx、429、超时、连接失败）"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Args:
            message: 错误描述
            status_code: HTTP 状态码，网络层异常时为 None
            original_error: 原始网络异常
        """
        super().__init__(message, status_code=status_code, recoverable=True)
        self.original_error = original_error


class RetriesExhaustedError(DeliveryError):
    """重试次数耗尽，last_error 为最后一次尝试的失败"""

    def __init__(self, last_error: RetryableDeliveryError, attempts: int) -> None:
        super().__init__(
            f"{last_error} (gave up after {attempts} attempts)",
            status_code=last_error.status_code,
            attempts=attempts,
            recoverable=True,
        )
        self.last_error = last_error
