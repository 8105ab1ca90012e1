"""
CRM 메일박스 동기화 시스템

메인 진입점 파일입니다.
"""

import asyncio
import typer
from rich.console import Console

from adapters.cli.mailbox_commands import app as mailbox_app
from adapters.db.database import initialize_database
from config.adapters import get_config

# 메인 CLI 앱
app = typer.Typer(
    name="mailsync",
    help="CRM 메일박스 동기화 시스템",
    no_args_is_help=True,
)

# 서브 명령어 추가
app.add_typer(mailbox_app, name="mailbox")

console = Console()


@app.command("init-db")
def init_database(
    drop_existing: bool = typer.Option(False, "--drop", help="기존 테이블을 삭제하고 재생성"),
):
    """데이터베이스를 초기화합니다."""

    async def _init_db():
        config = get_config()
        console.print(f"[blue]환경: {config.get_environment()}[/blue]")

        db_adapter = initialize_database(config)
        await db_adapter.initialize()
        try:
            if drop_existing:
                console.print("[yellow]기존 테이블을 삭제하는 중...[/yellow]")
                await db_adapter.drop_tables()

            console.print("[blue]데이터베이스 테이블을 생성하는 중...[/blue]")
            await db_adapter.create_tables()
        finally:
            await db_adapter.close()

        console.print("[green]✓ 데이터베이스가 성공적으로 초기화되었습니다![/green]")

    asyncio.run(_init_db())


@app.command("version")
def show_version():
    """버전 정보를 표시합니다."""
    console.print("[bold]CRM 메일박스 동기화 시스템[/bold]")
    console.print("버전: 1.0.0")


@app.command("config")
def show_config():
    """현재 설정을 표시합니다. 비밀 값은 출력하지 않습니다."""
    config = get_config()

    console.print("[bold]현재 설정[/bold]")
    console.print(f"환경: {config.get_environment()}")
    console.print(f"디버그 모드: {config.is_debug()}")
    console.print(f"Azure 테넌트 ID: {config.get_microsoft_tenant_id()}")
    console.print(f"OAuth 리다이렉트 URI: {config.get_oauth_redirect_uri()}")
    console.print(f"OAuth 권한: {' '.join(config.get_oauth_scopes())}")
    console.print(f"웹훅 기본 URL: {config.get_webhook_base_url()}")
    console.print(f"웹 서버: {config.get_web_host()}:{config.get_web_port()}")
    console.print(f"로그 레벨: {config.get_log_level()}")
    console.print(f"동기화 페이지 크기: {config.get_sync_page_size()}")
    console.print(f"동기화 동시 실행 수: {config.get_sync_max_concurrency()}")
    console.print(f"기본 동기화 폴더: {', '.join(config.get_sync_default_folders())}")


if __name__ == "__main__":
    app()
