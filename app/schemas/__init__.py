# app/schemas/__init__.py
"""
Schemas package

本包保持“安静”：不做聚合导出，需要时从具体模块显式导入，例如：
    from app.schemas.orders import OrderCreateIn, OrderOut
    from app.schemas.admin import AdminStatusIn
"""

__all__: list[str] = []
