"""
输入验证模块。

提供工具名称、归档成员路径和额外包说明符的验证功能。
"""

import os
import re
from pathlib import PurePosixPath


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    提供用户输入与下载内容的验证和 sanitization 功能。
    """

    TOOL_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._+-]*$')
    PACKAGE_SPEC_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._\-\[\],<>=!~*+;: "\'@/]*$')
    MAX_TOOL_NAME_LENGTH = 64
    MAX_SPECIFIER_LENGTH = 100
    MAX_PACKAGE_SPEC_LENGTH = 256

    @classmethod
    def validate_tool_name(cls, tool_name: str) -> bool:
        """
        验证 shim 工具名称的有效性。

        参数:
            tool_name: 工具名称，例如 python3.7 或 2to3

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not tool_name or not tool_name.strip():
            raise InputValidationError("工具名称不能为空")

        if len(tool_name) > cls.MAX_TOOL_NAME_LENGTH:
            raise InputValidationError(f"工具名称不能超过 {cls.MAX_TOOL_NAME_LENGTH} 个字符")

        if not cls.TOOL_NAME_PATTERN.match(tool_name):
            raise InputValidationError(f"工具名称包含非法字符: {tool_name}")

        return True

    @classmethod
    def validate_specifier_text(cls, text: str) -> str:
        """
        验证版本说明符文本的基本形式并返回去除首尾空白后的文本。

        参数:
            text: 原始说明符文本

        返回:
            去除首尾空白后的说明符文本
        """
        if text is None or not text.strip():
            raise InputValidationError("版本说明符不能为空")
        text = text.strip()
        if len(text) > cls.MAX_SPECIFIER_LENGTH:
            raise InputValidationError(f"版本说明符不能超过 {cls.MAX_SPECIFIER_LENGTH} 个字符")
        return text

    @classmethod
    def validate_package_spec(cls, spec: str) -> bool:
        """
        验证额外包说明符，拒绝以 - 开头的 pip 选项。

        参数:
            spec: 包说明符，例如 black==24.1.0

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not spec or not spec.strip():
            raise InputValidationError("包说明符不能为空")

        spec = spec.strip()
        if len(spec) > cls.MAX_PACKAGE_SPEC_LENGTH:
            raise InputValidationError(f"包说明符不能超过 {cls.MAX_PACKAGE_SPEC_LENGTH} 个字符")

        if not cls.PACKAGE_SPEC_PATTERN.match(spec):
            raise InputValidationError(f"包说明符格式无效: {spec}")

        return True

    @classmethod
    def safe_join_path(cls, base_path: str, *paths: str) -> str:
        """
        安全连接路径，防止路径遍历。

        参数:
            base_path: 基础路径
            *paths: 要连接的路径部分

        返回:
            安全连接后的路径

        抛出:
            InputValidationError: 如果结果路径位于 base_path 外部
        """
        base = os.path.abspath(base_path)
        joined = os.path.abspath(os.path.join(base, *paths))
        if joined != base and not joined.startswith(base + os.sep):
            raise InputValidationError(f"路径遍历检测: {joined}")
        return joined

    @classmethod
    def validate_archive_member(cls, name: str) -> bool:
        """
        验证归档成员名称不含绝对路径或上级目录引用。

        参数:
            name: 归档内的成员路径

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        normalized = name.replace("\\", "/")
        if normalized.startswith("/") or re.match(r'^[A-Za-z]:', normalized):
            raise InputValidationError(f"压缩包包含绝对路径: {name}")
        if ".." in PurePosixPath(normalized).parts:
            raise InputValidationError(f"压缩包包含非法路径: {name}")
        return True
