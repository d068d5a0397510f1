"""
HTTP 层：

- routers/  各资源的 APIRouter（由 app.main 统一 include）
- deps      身份 / 服务注入
- problem   统一错误出参形状
"""

__all__ = []
