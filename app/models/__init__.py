# app/models/__init__.py
"""
统一导出 ORM 模型。
"""

from importlib import import_module


def _export(module_name: str, class_name: str) -> None:
    module = import_module(module_name)
    globals()[class_name] = getattr(module, class_name)


MODEL_SPECS = [
    # -------- 目录侧（店铺 / 商品）--------
    ("app.models.shop", "Shop"),
    ("app.models.product", "Product"),
    # -------- 订单 --------
    ("app.models.order", "Order"),
    ("app.models.order_item", "OrderItem"),
    ("app.models.order_status_history", "OrderStatusHistory"),
    # -------- 资金台账 / 审计 --------
    ("app.models.shop_ledger", "ShopLedgerEntry"),
    ("app.models.admin_audit_log", "AdminAuditLog"),
]

for _module_name, _class_name in MODEL_SPECS:
    _export(_module_name, _class_name)

__all__ = [name for _, name in MODEL_SPECS]
