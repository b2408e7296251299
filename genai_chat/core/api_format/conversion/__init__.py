"""
消息/响应格式转换

包含内容块编解码、媒体解析、对话组装、响应归一化、安全拦截与参数预检。
"""
