"""
引擎异常

校验类问题（未选轮次、已封盘、余额不足…）一律以结构化结果返回，不走异常；
这里只放需要向上抛的传输/状态错误。
"""


class RoundEngineException(Exception):
    """所有引擎异常的基类"""
    pass


class TransportError(RoundEngineException):
    """后端/钱包请求失败（网络错误、非 2xx、success=false）"""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidStateTransition(RoundEngineException):
    """非法的轮次状态转换"""
    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot transition from {from_status} to {to_status}")
