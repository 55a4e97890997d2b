"""
日志工具模块
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs",
                  console: bool = True) -> logging.Logger:
    """
    设置日志系统（避免重复初始化）

    Args:
        log_level: 日志级别
        log_dir: 日志目录, None 表示不写文件
        console: 是否输出到控制台

    Returns:
        根日志器
    """
    logger = logging.getLogger()
    if logger.handlers:
        # 已经初始化过了
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    log_filename = None
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        current_date = datetime.now().strftime("%Y-%m-%d")
        log_filename = log_path / f"{current_date}.log"

        # 文件处理器（所有级别）
        file_handler = logging.FileHandler(log_filename, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        # 控制台处理器（WARNING及以上级别, 交互界面由rich负责）
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # 第三方库降噪
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logger.info(f"Logging initialised. Log file: {log_filename}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    获取指定名称的日志器

    Args:
        name: 日志器名称

    Returns:
        Logger实例
    """
    return logging.getLogger(name)
