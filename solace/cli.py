#!/usr/bin/env python3
"""
Solace CLI - 会話サポートAPIサーバーの管理ツール
Typer を使用したサーバー起動・ユーザー管理・トークン発行
"""

import asyncio
import uuid
from datetime import datetime
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import get_settings
from .core.exceptions import SolaceException
from .domain.models.user import UserAccount, UserRole

app = typer.Typer(
    name="solace",
    help="Solace - AI会話サポートAPIサーバー管理CLI",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


@app.command()
def server(
    host: Optional[str] = typer.Option(None, help="サーバーのホストアドレス"),
    port: Optional[int] = typer.Option(None, help="サーバーのポート番号"),
    reload: bool = typer.Option(False, help="開発モードでの自動リロード"),
):
    """
    FastAPI サーバーを起動します
    """
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(Panel(
        f"[bold blue]Solace API Server[/bold blue]\n"
        f"🚀 起動中: http://{host}:{port}\n"
        f"🔌 WebSocket: ws://{host}:{port}/ws\n"
        f"📚 ドキュメント: http://{host}:{port}/docs",
        title="サーバー起動",
    ))

    import uvicorn

    uvicorn.run(
        "solace.api.main:app",
        host=host,
        port=port,
        reload=reload,
        access_log=True,
    )


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="メールアドレス"),
    username: str = typer.Argument(..., help="ユーザー名"),
    admin: bool = typer.Option(False, "--admin", help="管理者ロールで作成"),
    user_id: Optional[str] = typer.Option(None, help="ユーザーID（省略時は自動生成）"),
):
    """
    ユーザーを作成します（設定されたストアに保存）
    """
    from .api.dependencies import get_store

    account = UserAccount(
        user_id=user_id or str(uuid.uuid4()),
        email=email,
        username=username,
        role=UserRole.ADMIN if admin else UserRole.USER,
    )

    try:
        asyncio.run(get_store().save_user(account))
    except SolaceException as e:
        console.print(f"[red]エラー: {e.message}[/red]")
        raise typer.Exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("項目", style="cyan")
    table.add_column("値", style="white")
    for key, value in account.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command("issue-token")
def issue_token(
    user_id: str = typer.Argument(..., help="ユーザーID"),
):
    """
    ユーザーのベアラートークンを発行します
    """
    from .api.dependencies import get_store, get_verifier

    account = asyncio.run(get_store().get_user(user_id))
    if account is None:
        console.print(f"[red]エラー: ユーザー '{user_id}' が見つかりません[/red]")
        raise typer.Exit(1)
    if not account.is_active:
        console.print(f"[yellow]警告: ユーザー '{user_id}' は非アクティブです（トークンは検証に失敗します）[/yellow]")

    token = get_verifier().issue_token(account.user_id, role=account.role)
    ttl = get_settings().auth.token_ttl_seconds

    console.print(Panel(
        f"[bold]ユーザー:[/bold] {account.username} ({account.role.value})\n"
        f"[bold]有効期限:[/bold] {ttl} 秒\n\n"
        f"{token}",
        title="トークン発行",
        border_style="green",
    ))


@app.command()
def health(
    url: Optional[str] = typer.Option(None, help="APIサーバーのURL"),
):
    """
    APIサーバーのヘルスチェックを実行
    """
    settings = get_settings()
    base_url = url or f"http://127.0.0.1:{settings.api_port}"

    try:
        response = httpx.get(f"{base_url}/v1/health", timeout=5)
    except httpx.HTTPError as e:
        console.print(Panel(
            f"[red]❌ APIサーバーに接続できません[/red]\n"
            f"エラー: {str(e)}\n"
            f"💡 'solace server' でサーバーを起動してください",
            title="接続エラー",
            border_style="red",
        ))
        raise typer.Exit(1)

    if response.status_code != 200:
        console.print(f"[red]❌ APIサーバーエラー: {response.status_code}[/red]")
        raise typer.Exit(1)

    data = response.json()
    components = "\n".join(
        f"  {'✅' if ok else '❌'} {name}" for name, ok in data.get("components", {}).items()
    )
    console.print(Panel(
        f"[bold green]✅ APIサーバーは動作中[/bold green]\n"
        f"📊 ステータス: {data['status']}\n"
        f"🏷️  バージョン: {data['version']}\n"
        f"🔌 接続数: {data.get('connections', 0)}\n"
        f"{components}\n"
        f"⏰ チェック時刻: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        title="ヘルスチェック結果",
    ))


@app.command()
def version():
    """
    バージョン情報を表示
    """
    console.print(Panel(
        f"[bold blue]Solace CLI[/bold blue] v{__version__}\n"
        f"🔧 Built with [bold]Typer[/bold]\n"
        f"🚀 Powered by [bold]FastAPI[/bold]",
        title="バージョン情報",
    ))


if __name__ == "__main__":
    app()
