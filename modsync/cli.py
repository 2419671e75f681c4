"""
CLI 模块

命令行接口实现。
"""

import asyncio
from typing import List, Optional, Tuple

import click
from loguru import logger

from modsync import __version__
from modsync.exceptions import ModSyncError
from modsync.launchers import detect_launchers
from modsync.logger import setup_logger
from modsync.models import InstallerProfile, ItemStatus, RunReport, RunState, Settings
from modsync.orchestrator import InstallOrchestrator
from modsync.utils import load_settings_file


STATUS_MARKS = {
    ItemStatus.INSTALLED: "✓",
    ItemStatus.PRESENT: "=",
    ItemStatus.SKIPPED_FEATURE: "-",
    ItemStatus.REMOVED: "x",
    ItemStatus.FAILED: "!",
    ItemStatus.CANCELLED: "?",
}


def print_profile(profile: InstallerProfile) -> None:
    manifest = profile.manifest
    click.echo(f"{manifest.name} {manifest.modpack_version}")
    if manifest.subtitle:
        click.echo(f"  {manifest.subtitle}")
    click.echo(f"  来源: {profile.source}@{profile.branch}")
    click.echo(f"  加载器: {manifest.loader.type.value} {manifest.loader.version} ({manifest.loader.game_version})")
    click.echo(f"  已安装: {'是' if profile.installed else '否'}")
    click.echo(f"  有更新: {'是' if profile.update_available else '否'}")
    click.echo(f"  需要应用: {'是' if profile.needs_apply else '否'}")
    if profile.launcher:
        click.echo(f"  启动器: {profile.launcher.name}")
    if manifest.features:
        click.echo("  功能:")
        for feature in manifest.features:
            mark = "✓" if feature.id in profile.enabled_features else "✗"
            click.echo(f"    [{mark}] {feature.id} - {feature.name}")


def print_report(report: RunReport) -> None:
    for outcome in report.outcomes:
        mark = STATUS_MARKS.get(outcome.status, " ")
        line = f"  [{mark}] {outcome.kind:<12} {outcome.name} ({outcome.status.value})"
        if outcome.error:
            line += f" - {outcome.error.get('message')}"
        click.echo(line)
    for warning in report.warnings:
        click.echo(f"  警告: {warning}")
    click.echo(
        f"完成: {len(report.installed)} 已安装, {len(report.failed)} 失败, "
        f"{len(report.skipped)} 跳过"
    )


async def install_async(
    settings: Settings,
    source: str,
    branch: str,
    launcher: Optional[str],
    toggles: List[Tuple[str, bool]],
) -> RunReport:
    """异步运行安装"""
    async with InstallOrchestrator(settings) as orchestrator:
        return await orchestrator.run(source, branch, launcher, toggles)


async def status_async(
    settings: Settings, source: str, branch: str, launcher: Optional[str]
) -> InstallerProfile:
    async with InstallOrchestrator(settings) as orchestrator:
        return await orchestrator.start_install(source, branch, launcher)


def _run(coro):
    try:
        return asyncio.run(coro)
    except ModSyncError as e:
        raise click.ClickException(str(e))
    except KeyboardInterrupt:
        logger.warning("[取消] 用户中断")
        raise click.Abort()


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False),
    default="modsync.toml",
    show_default=True,
    help="设置文件（TOML / JSON / YAML）",
)
@click.option("--debug", is_flag=True, help="启用调试模式")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, settings_path: str, debug: bool):
    """ModSync - Minecraft 整合包同步安装工具"""
    try:
        settings = Settings.from_dict(load_settings_file(settings_path))
    except ModSyncError as e:
        raise click.ClickException(str(e))

    setup_logger(level="DEBUG" if debug else None, log_file=settings.log_file)
    ctx.obj = settings


@main.command()
@click.argument("source")
@click.option("-b", "--branch", default="main", show_default=True, help="清单分支")
@click.option("-l", "--launcher", help="启动器: vanilla / prism / multimc / 自定义名称 / 族:路径")
@click.option("-f", "--feature", multiple=True, help="启用功能（可多次使用）")
@click.option("-x", "--disable", multiple=True, help="禁用功能（可多次使用）")
@click.pass_obj
def install(
    settings: Settings,
    source: str,
    branch: str,
    launcher: Optional[str],
    feature: tuple,
    disable: tuple,
):
    """安装或更新 SOURCE（GitHub 仓库，如 owner/repo）"""
    toggles = [(f, True) for f in feature] + [(f, False) for f in disable]
    report = _run(install_async(settings, source, branch, launcher, toggles))

    print_report(report)
    if report.state is RunState.AWAITING_LAUNCHER:
        raise click.ClickException(
            "未找到受支持的启动器，请使用 --launcher <族>:<路径> 手动指定"
        )
    if report.state is RunState.CANCELLED:
        raise click.Abort()


@main.command()
@click.argument("source")
@click.option("-b", "--branch", default="main", show_default=True, help="清单分支")
@click.option("-l", "--launcher", help="启动器选择")
@click.pass_obj
def status(settings: Settings, source: str, branch: str, launcher: Optional[str]):
    """显示 SOURCE 的安装状态，不做任何修改"""
    print_profile(_run(status_async(settings, source, branch, launcher)))


@main.command()
@click.pass_obj
def launchers(settings: Settings):
    """列出探测到的启动器"""
    found = detect_launchers(settings)
    if not found:
        click.echo("没有找到受支持的启动器")
        return
    for handle in found:
        click.echo(f"  {handle.name:<12} {handle.family.value:<8} {handle.root}")


if __name__ == "__main__":
    main()
