"""
Main entry point for QueryPilot
自然语言到KQL查询系统主入口
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console

from querypilot.core.coordinator import QueryServiceFactory
from querypilot.interfaces import ConsoleStepInterface, ConsoleQueryEditor, QueryPilotCLI, render_result
from querypilot.utils import ConfigurationError, QueryPilotError, load_config, setup_logging, get_logger
from querypilot.utils.paths import get_project_paths


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QueryPilot - natural language to KQL for Application Insights")
    parser.add_argument("--config", help="配置文件路径 (JSON)", default=None)
    parser.add_argument("--model", help="OpenAI模型名称", default=None)
    parser.add_argument("--timeout", type=float, help="AI / 数据源调用超时时间(秒)", default=None)
    parser.add_argument("--log-level", help="日志级别", default=None)
    parser.add_argument("--max-regenerations", type=int, help="每个问题允许的重新生成次数", default=None)
    parser.add_argument("--query", help="执行单个问题后退出", default=None)
    return parser


def main():
    """Main entry point"""
    args = build_parser().parse_args()
    console = Console()

    project_paths = get_project_paths()
    config_path = args.config
    if config_path is None and Path(project_paths.config_file_path).exists():
        config_path = project_paths.config_file_path

    try:
        config = load_config(config_path, overrides={
            "openai_model": args.model,
            "collaborator_timeout": args.timeout,
            "log_level": args.log_level,
            "max_regeneration_attempts": args.max_regenerations,
        })
    except ConfigurationError as e:
        console.print(f"[red]❌ 配置错误: {str(e)}[/red]")
        sys.exit(1)

    # 检查API密钥
    if not config.openai_api_key:
        console.print("[red]❌ 错误: OPENAI_API_KEY 环境变量未设置[/red]")
        console.print("请设置您的OpenAI API密钥:")
        console.print("export OPENAI_API_KEY='your-api-key-here'")
        sys.exit(1)

    if config.templates_path is None and Path(project_paths.templates_path).exists():
        config.templates_path = project_paths.templates_path

    project_paths.ensure_directories()
    setup_logging(config.log_level, log_dir=str(project_paths.logs_dir))
    logger = get_logger(__name__)

    try:
        service = QueryServiceFactory.create_service(
            config,
            interface=ConsoleStepInterface(console),
            editor=ConsoleQueryEditor(console) if config.allow_editing else None
        )
    except QueryPilotError as e:
        console.print(f"[red]❌ 系统初始化失败: {str(e)}[/red]")
        sys.exit(1)

    cli = QueryPilotCLI(service, console)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        if args.query:
            result = loop.run_until_complete(cli.process_single_query(args.query))
            if result is None:
                console.print("[yellow]Query execution was cancelled.[/yellow]")
            else:
                render_result(console, result)
        else:
            loop.run_until_complete(cli.run_interactive_mode())
    except KeyboardInterrupt:
        console.print("\n\n👋 QueryPilot stopped")
    except QueryPilotError as e:
        logger.error(f"Query failed: {str(e)}")
        console.print(f"[red]❌ {str(e)}[/red]")
        sys.exit(1)
    finally:
        try:
            loop.run_until_complete(cli.cleanup())
        finally:
            loop.close()


if __name__ == "__main__":
    main()
