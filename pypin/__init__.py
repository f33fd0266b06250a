"""
Pypin - 按目录选择 Python 版本的解释器管理器。
"""

__version__ = "0.1.0"
