"""
Kanary 命令行接口

使用 typer 提供友好的命令行交互，五个控制命令通过控制API执行：
start / pause / resume / abort / status。
另有 serve（启动控制API）、run（进程内执行一次发布）与 render（输出清单）。
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from kanary import __version__
from kanary.kanary_api.client import ControlClient
from kanary.kanary_orchestrator.factory import build_orchestrator
from kanary.kanary_reconciler.manifests import dump_manifests, render_manifests
from kanary.kanary_utils import config
from kanary.kanary_utils.errors import KanaryError, PlanValidationError
from kanary.kanary_utils.output import setup_logging
from kanary.models import Phase, RolloutPlan

app = typer.Typer(help="Kanary 灰度发布控制器命令行工具")
console = Console()

# run 命令按最终阶段返回的退出码
RUN_EXIT_CODES = {
    Phase.PROMOTED: 0,
    Phase.ROLLED_BACK: 9,
    Phase.FAILED: 10,
    Phase.PAUSED: 11,
}

# 全局变量，由回调函数设置
_api_url: Optional[str] = None


def _client() -> ControlClient:
    return ControlClient(_api_url or config.get_api_url())


def _fail(error: KanaryError) -> None:
    """打印错误并以该错误类型对应的退出码退出"""
    rprint(f"[red]✗[/red] {error.kind}: {error.message}")
    if isinstance(error, PlanValidationError):
        for problem in error.problems:
            rprint(f"  [dim]- {problem}[/dim]")
    raise typer.Exit(code=error.exit_code)


def _load_plan(
    plan_file: Optional[Path], overrides: Dict[str, Any]
) -> RolloutPlan:
    """从YAML文件加载计划并应用命令行覆盖项，返回已校验的计划"""
    data: Dict[str, Any] = {}
    if plan_file is not None:
        try:
            loaded = yaml.safe_load(plan_file.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PlanValidationError(f"cannot read plan file {plan_file}: {e}")
        if not isinstance(loaded, dict):
            raise PlanValidationError(f"plan file {plan_file} must contain a mapping")
        data.update(loaded)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return RolloutPlan.from_dict(data).validate()


def _print_state(state: Dict[str, Any], as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps(state))
        return
    plan = state["plan"]
    table = Table(title=f"发布 {state['rollout_id']}")
    table.add_column("字段", style="cyan")
    table.add_column("值", style="green")
    table.add_row("服务", f"{plan['namespace']}/{plan['service']}")
    table.add_row("版本", f"{plan['stable_revision']} -> {plan['canary_revision']}")
    table.add_row("阶段", state["phase"])
    table.add_row("权重", f"canary {state['weight']}% / stable {state['stable_weight']}%")
    table.add_row("健康", state["health"])
    table.add_row("原因", state.get("reason") or "-")
    table.add_row("样本数", str(state.get("sample_count", 0)))
    console.print(table)


def _plan_options(
    service: Optional[str],
    stable: Optional[str],
    canary: Optional[str],
    namespace: Optional[str],
    initial_weight: Optional[int],
    step_size: Optional[int],
    step_interval: Optional[float],
    threshold: Optional[float],
    max_weight: Optional[int],
    bake: Optional[float],
) -> Dict[str, Any]:
    return {
        "service": service,
        "stable_revision": stable,
        "canary_revision": canary,
        "namespace": namespace,
        "initial_weight": initial_weight,
        "step_size": step_size,
        "step_interval": step_interval,
        "success_threshold": threshold,
        "max_weight": max_weight,
        "bake_duration": bake,
    }


@app.callback()
def main_callback(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="配置文件路径 (默认: ~/.kanary/config.yaml)"
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="控制API地址"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="日志级别"),
) -> None:
    """Kanary：自动化的NGINX Ingress灰度发布"""
    global _api_url
    try:
        config.load_config(str(config_file) if config_file else None)
    except KanaryError as e:
        _fail(e)
    setup_logging(log_level or config.get_log_level())
    _api_url = api_url


@app.command()
def start(
    plan_file: Optional[Path] = typer.Option(None, "--file", "-f", help="发布计划YAML文件"),
    service: Optional[str] = typer.Option(None, "--service", "-s", help="目标服务名"),
    stable: Optional[str] = typer.Option(None, "--stable", help="stable 修订版本"),
    canary: Optional[str] = typer.Option(None, "--canary", help="canary 修订版本"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="命名空间"),
    initial_weight: Optional[int] = typer.Option(None, "--initial-weight", help="初始权重"),
    step_size: Optional[int] = typer.Option(None, "--step", help="每次提升的权重"),
    step_interval: Optional[float] = typer.Option(None, "--interval", help="提升间隔（秒）"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="成功率阈值 0..1"),
    max_weight: Optional[int] = typer.Option(None, "--max-weight", help="最大权重"),
    bake: Optional[float] = typer.Option(None, "--bake", help="最大权重下的烘焙时间（秒）"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """开始一个灰度发布"""
    try:
        plan = _load_plan(
            plan_file,
            _plan_options(
                service, stable, canary, namespace, initial_weight,
                step_size, step_interval, threshold, max_weight, bake,
            ),
        )
        state = _client().start(plan.to_dict())
    except KanaryError as e:
        _fail(e)
    rprint(f"[green]✓[/green] 已开始发布: {state['rollout_id']}")
    _print_state(state, as_json)


@app.command()
def pause(
    rollout_id: str = typer.Argument(..., help="发布ID"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """暂停发布"""
    try:
        state = _client().pause(rollout_id)
    except KanaryError as e:
        _fail(e)
    rprint(f"[yellow]⏸[/yellow] 发布已暂停: {rollout_id}")
    _print_state(state, as_json)


@app.command()
def resume(
    rollout_id: str = typer.Argument(..., help="发布ID"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """恢复发布"""
    try:
        state = _client().resume(rollout_id)
    except KanaryError as e:
        _fail(e)
    rprint(f"[green]▶[/green] 发布已恢复: {rollout_id}")
    _print_state(state, as_json)


@app.command()
def abort(
    rollout_id: str = typer.Argument(..., help="发布ID"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """终止发布并回滚到stable"""
    try:
        state = _client().abort(rollout_id)
    except KanaryError as e:
        _fail(e)
    rprint(f"[red]⏹[/red] 发布已回滚: {rollout_id}")
    _print_state(state, as_json)


@app.command()
def status(
    rollout_id: Optional[str] = typer.Argument(None, help="发布ID，不指定则列出所有"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """查看发布状态"""
    try:
        if rollout_id:
            _print_state(_client().status(rollout_id), as_json)
            return
        states = _client().list()
    except KanaryError as e:
        _fail(e)

    if as_json:
        console.print_json(json.dumps(states))
        return
    if not states:
        rprint("[yellow]没有找到任何发布[/yellow]")
        return
    table = Table(title="发布列表")
    table.add_column("ID", style="cyan")
    table.add_column("服务", style="green")
    table.add_column("canary", style="magenta")
    table.add_column("阶段", style="yellow")
    table.add_column("权重", style="blue")
    for state in states:
        plan = state["plan"]
        table.add_row(
            state["rollout_id"],
            f"{plan['namespace']}/{plan['service']}",
            plan["canary_revision"],
            state["phase"],
            f"{state['weight']}/{state['stable_weight']}",
        )
    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="监听地址"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="监听端口"),
    dry_run: bool = typer.Option(False, "--dry-run", help="使用进程内集群与静态指标"),
) -> None:
    """启动控制API服务"""
    from kanary.kanary_api.service import start_service

    try:
        start_service(host or config.get_api_host(), port or config.get_api_port(), dry_run)
    except KeyboardInterrupt:
        rprint("\n[yellow]⚠ 服务已停止[/yellow]")
        raise typer.Exit(code=0)


async def _run_rollout(plan: RolloutPlan, dry_run: bool, poll: float) -> Dict[str, Any]:
    orchestrator = build_orchestrator(dry_run=dry_run)
    try:
        state = await orchestrator.start(plan)
        rprint(f"[green]✓[/green] 已开始发布: {state.rollout_id}")
        last_weight = state.weight
        while True:
            state = orchestrator.status(state.rollout_id)
            if state.weight != last_weight:
                rprint(f"  [dim]canary 权重 {last_weight}% -> {state.weight}%[/dim]")
                last_weight = state.weight
            if state.is_terminal or state.phase is Phase.PAUSED:
                return state.to_dict()
            await asyncio.sleep(poll)
    finally:
        await orchestrator.shutdown()


@app.command()
def run(
    plan_file: Path = typer.Option(..., "--file", "-f", help="发布计划YAML文件"),
    dry_run: bool = typer.Option(False, "--dry-run", help="使用进程内集群与静态指标"),
    poll: float = typer.Option(1.0, "--poll", help="状态刷新间隔（秒）"),
    as_json: bool = typer.Option(False, "--json", help="以JSON输出"),
) -> None:
    """在当前进程内执行一次发布直到结束或暂停"""
    try:
        plan = _load_plan(plan_file, {})
        final = asyncio.run(_run_rollout(plan, dry_run, poll))
    except KanaryError as e:
        _fail(e)
    except KeyboardInterrupt:
        rprint("\n[yellow]⚠ 已中断，Ingress 保持当前权重[/yellow]")
        raise typer.Exit(code=130)
    _print_state(final, as_json)
    raise typer.Exit(code=RUN_EXIT_CODES.get(Phase(final["phase"]), 1))


@app.command()
def render(
    plan_file: Path = typer.Option(..., "--file", "-f", help="发布计划YAML文件"),
    host: str = typer.Option(..., "--host", help="Ingress 主机名"),
    stable_image: str = typer.Option(..., "--stable-image", help="stable 镜像"),
    canary_image: str = typer.Option(..., "--canary-image", help="canary 镜像"),
    port: int = typer.Option(8080, "--port", "-p", help="容器端口"),
    replicas: int = typer.Option(1, "--replicas", help="每个Deployment的副本数"),
) -> None:
    """输出灰度发布所需的Kubernetes清单"""
    try:
        plan = _load_plan(plan_file, {})
    except KanaryError as e:
        _fail(e)
    documents = render_manifests(plan, host, stable_image, canary_image, port, replicas)
    typer.echo(dump_manifests(documents), nl=False)


@app.command()
def version() -> None:
    """显示版本"""
    rprint(f"kanary {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
