"""
Prometheus metrics for monitoring
"""

from prometheus_client import Counter, Histogram

# ==================== 消息/响应格式转换 ====================

conversion_total = Counter(
    "genai_conversion_total",
    "Total number of message/response conversions",
    ["direction", "model_family", "status"],  # direction: request/response, status: success/error
)

conversion_duration_seconds = Histogram(
    "genai_conversion_duration_seconds",
    "Duration of message/response conversions in seconds",
    ["direction", "model_family"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)

# ==================== 安全拦截 ====================

safety_violation_total = Counter(
    "genai_safety_violation_total",
    "Total number of responses rejected by the safety handler",
    ["reason"],  # reason: prompt_blocked / SAFETY / RECITATION / OTHER
)

# ==================== 媒体解析 ====================

media_resolution_total = Counter(
    "genai_media_resolution_total",
    "Total number of media reference resolutions",
    ["outcome"],  # outcome: passthrough / resolved / empty_blob / failed
)
