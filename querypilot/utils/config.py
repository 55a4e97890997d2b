"""
配置工具模块
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from ..models.config import SystemConfig
from .exceptions import ConfigurationError


# 环境变量 -> 配置字段
ENV_MAPPINGS = {
    'OPENAI_MODEL': 'openai_model',
    'OPENAI_API_KEY': 'openai_api_key',
    'OPENAI_API_BASE': 'openai_base_url',
    'QUERYPILOT_TIMEOUT': 'collaborator_timeout',
    'QUERYPILOT_SESSION_MAX_AGE_HOURS': 'session_max_age_hours',
    'QUERYPILOT_IDLE_SWEEP_INTERVAL': 'idle_sweep_interval',
    'QUERYPILOT_LANGUAGE': 'language',
    'QUERYPILOT_DEFAULT_MODE': 'default_mode',
    'QUERYPILOT_CONFIDENCE_THRESHOLD': 'confidence_threshold',
    'QUERYPILOT_ALLOW_EDITING': 'allow_editing',
    'QUERYPILOT_MAX_REGENERATIONS': 'max_regeneration_attempts',
    'QUERYPILOT_TEMPLATES_PATH': 'templates_path',
    'QUERYPILOT_LOG_LEVEL': 'log_level',
    'APPINSIGHTS_APPLICATION_ID': 'appinsights_application_id',
    'APPINSIGHTS_API_KEY': 'appinsights_api_key',
    'APPINSIGHTS_ENDPOINT': 'appinsights_endpoint',
    'AZURE_TENANT_ID': 'azure_tenant_id',
    'AZURE_SUBSCRIPTION_ID': 'azure_subscription_id',
    'AZURE_RESOURCE_GROUP': 'azure_resource_group',
    'AZURE_RESOURCE_NAME': 'azure_resource_name',
}

FLOAT_FIELDS = {'collaborator_timeout', 'session_max_age_hours', 'idle_sweep_interval', 'confidence_threshold'}
INT_FIELDS = {'max_regeneration_attempts'}
BOOL_FIELDS = {'allow_editing'}


def _convert(config_key: str, value: str) -> Any:
    """环境变量类型转换"""
    if config_key in FLOAT_FIELDS:
        return float(value)
    if config_key in INT_FIELDS:
        return int(value)
    if config_key in BOOL_FIELDS:
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return value


def load_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> SystemConfig:
    """
    加载系统配置

    Order of precedence: explicit overrides, environment, JSON config file, defaults.

    Args:
        config_path: 配置文件路径，可选
        overrides: 命令行等显式覆盖值, None 值会被忽略

    Returns:
        SystemConfig实例

    Raises:
        ConfigurationError: 配置加载失败
    """
    try:
        load_dotenv(override=False)

        config_data: Dict[str, Any] = {}

        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigurationError(f"Config file not found: {config_path}")
            with open(path, 'r', encoding='utf-8') as f:
                config_data.update(json.load(f))

        for env_key, config_key in ENV_MAPPINGS.items():
            env_value = os.getenv(env_key)
            if env_value is not None and env_value != "":
                config_data[config_key] = _convert(config_key, env_value)

        if overrides:
            config_data.update({k: v for k, v in overrides.items() if v is not None})

        return SystemConfig(**config_data)

    except ConfigurationError:
        raise
    except (ValueError, ValidationError, json.JSONDecodeError, OSError) as e:
        raise ConfigurationError(f"Failed to load configuration: {str(e)}") from e
