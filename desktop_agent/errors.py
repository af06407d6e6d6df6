"""异常定义

只有 CaptureError 和 OracleChannelError 会终止一次运行；
其余异常都在本地被吸收，变成失败的 ActionOutcome / Decision，
写入历史后交给决策模型自行纠正。
"""


class AgentError(Exception):
    """所有 Agent 异常的基类"""


class ConfigError(AgentError):
    pass


class CaptureError(AgentError):
    """截图失败：环境不可用，致命"""


class OracleError(AgentError):
    """决策模型调用失败（可恢复）"""


class RateLimited(OracleError):
    pass


class MalformedResponse(OracleError):
    """模型输出无法解析成动作"""


class OracleChannelError(OracleError):
    """鉴权失败、模型不存在等无法恢复的错误，致命"""


class ValidationError(AgentError):
    def __init__(self, fields, message):
        super().__init__(message)
        self.fields = list(fields)


class DeviceError(AgentError):
    pass


class UnknownActionTag(AgentError):
    def __init__(self, tag):
        super().__init__(f"Unknown action type: {tag}")
        self.tag = tag
