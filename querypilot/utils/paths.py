"""
项目路径配置模块
"""

import os
from pathlib import Path
from typing import Optional, Union

HOME_ENV_VAR = "QUERYPILOT_HOME"


class ProjectPaths:
    """Directories QueryPilot reads from and writes to, rooted at ~/.querypilot or $QUERYPILOT_HOME"""

    def __init__(self, base_dir: Union[str, Path, None] = None):
        if base_dir is None:
            # 包可能以只读方式安装, 数据放在用户目录
            base_dir = os.environ.get(HOME_ENV_VAR) or Path.home() / ".querypilot"
        self.base_dir = Path(base_dir).expanduser()

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def config_dir(self) -> Path:
        return self.base_dir / "config"

    @property
    def config_file_path(self) -> str:
        return str(self.config_dir / "config.json")

    @property
    def templates_path(self) -> str:
        """User template file, merged over the built-in templates"""
        return str(self.config_dir / "templates.json")

    def ensure_directories(self):
        """确保日志和配置目录存在"""
        for directory in (self.logs_dir, self.config_dir):
            directory.mkdir(parents=True, exist_ok=True)


_paths: Optional[ProjectPaths] = None


def get_project_paths() -> ProjectPaths:
    """获取项目路径配置实例"""
    global _paths
    if _paths is None:
        _paths = ProjectPaths()
    return _paths
