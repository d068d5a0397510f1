# app/db/__init__.py
"""
数据库层：
- base.py     ORM Base + init_models() / create_schema()
- session.py  异步引擎 / 会话工厂 / FastAPI 依赖
- uow.py      原子 unit of work（冲突重试）

这里不做导入副作用（引擎在 session.py 首次导入时创建）。
"""
