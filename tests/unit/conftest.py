# tests/unit/conftest.py
import pytest


@pytest.fixture(autouse=True)
def _db_seed():
    """纯函数测试不需要数据库：覆盖顶层的建库 + 种子。"""
    yield
