"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 维护接口的限流配置。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，单进程内存存储即可
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
