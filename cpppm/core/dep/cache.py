"""缓存目录布局

  <cache>/<name>/sources/<version>/   下载的归档、解包后的 src/、戳文件
  <cache>/<name>/include/             HeaderOnly 包安装的头文件
  <cache>/<name>/install/             CMake / Custom 构建的安装前缀

CacheLayout 只做路径计算和只读扫描；缓存目录归 PackageManager 所有，
每次拉取/构建时作为参数传入。
"""

from __future__ import annotations

from pathlib import Path

from cpppm.core.dep.models import PackageDescriptor
from cpppm.core.exceptions import ValidationError

STAMP_FILE = ".cpppm-stamp.yml"


class CacheLayout:
    """缓存目录路径规则"""

    def __init__(self, root: Path) -> None:
        self.root = root

    def package_dir(self, name: str) -> Path:
        return self.root / name

    def version_dir(self, pkg: PackageDescriptor) -> Path:
        version = pkg.version.replace("/", "_")
        if version in ("", ".", ".."):
            raise ValidationError(f"{pkg.name}: 版本号不能用作目录名: {pkg.version!r}")
        return self.package_dir(pkg.name) / "sources" / version

    def stamp_path(self, pkg: PackageDescriptor) -> Path:
        return self.version_dir(pkg) / STAMP_FILE

    def unpack_dir(self, pkg: PackageDescriptor) -> Path:
        return self.version_dir(pkg) / "src"

    def include_dir(self, name: str) -> Path:
        return self.package_dir(name) / "include"

    def prefix_dir(self, name: str) -> Path:
        return self.package_dir(name) / "install"

    def list_versions(self, name: str) -> list[str]:
        """列出某个包已完整拉取的版本（存在戳文件的版本目录）"""
        base = self.package_dir(name) / "sources"
        if not base.exists():
            return []
        return sorted(
            d.name for d in base.iterdir()
            if d.is_dir() and (d / STAMP_FILE).exists()
        )

    def list_packages(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            d.name for d in self.root.iterdir()
            if d.is_dir() and not d.name.startswith(".")
        )
