"""
메일박스 CLI 명령어

메일박스 관리/동기화 유즈케이스를 CLI 명령으로 노출하는 어댑터입니다.
"""

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from core.domain.entities import MailboxSyncReport
from core.domain.exceptions import MailSyncError
from adapters.db.database import DatabaseAdapter, initialize_database
from adapters.factory import AdapterFactory, get_adapter_factory
from config.adapters import get_config

# CLI 앱 생성
app = typer.Typer(name="mailbox", help="메일박스 관리 명령어")
console = Console()


def _run_with_database(action: Callable[[AdapterFactory, DatabaseAdapter], Awaitable[None]]) -> None:
    """DB를 초기화하고 action을 실행한 뒤 연결을 닫습니다."""

    async def _run():
        db_adapter = initialize_database(get_config())
        await db_adapter.initialize()
        try:
            await action(get_adapter_factory(), db_adapter)
        except MailSyncError as e:
            console.print(f"[red]오류: {e}[/red]")
            raise typer.Exit(1)
        finally:
            await db_adapter.close()

    asyncio.run(_run())


def _print_report(report: MailboxSyncReport) -> None:
    table = Table(title=f"동기화 결과: {report.mailbox_id}")
    table.add_column("폴더", style="cyan")
    table.add_column("모드")
    table.add_column("상태")
    table.add_column("가져옴", justify="right")
    table.add_column("건너뜀", justify="right")
    table.add_column("삭제", justify="right")
    table.add_column("오류", style="red")

    for folder in report.folders:
        table.add_row(
            folder.folder_name,
            folder.mode.value,
            folder.state.value,
            str(folder.imported),
            str(folder.skipped),
            str(folder.deleted),
            folder.error or "",
        )

    console.print(table)
    if report.error:
        console.print(f"[yellow]경고: {report.error}[/yellow]")


@app.command("add")
def add_mailbox(
    business_id: str = typer.Argument(..., help="비즈니스 ID"),
    address: str = typer.Argument(..., help="메일박스 이메일 주소"),
    folders: Optional[List[str]] = typer.Option(None, "--folder", help="동기화할 폴더 (반복 지정 가능)"),
    inbound: bool = typer.Option(True, "--inbound/--no-inbound", help="수신 메일 동기화"),
    outbound: bool = typer.Option(True, "--outbound/--no-outbound", help="발신 메일 동기화"),
):
    """비즈니스의 자격 증명에 메일박스를 등록합니다."""

    async def _add(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            usecase = factory.create_mailbox_management_usecase(session)
            mailbox = await usecase.attach_mailbox(
                business_id=business_id,
                mailbox_address=address,
                sync_folders=folders or None,
                sync_inbound=inbound,
                sync_outbound=outbound,
            )

        console.print("[green]✓ 메일박스가 등록되었습니다![/green]")
        console.print(f"메일박스 ID: {mailbox.id}")
        console.print(f"동기화 폴더: {', '.join(mailbox.sync_folders)}")

    _run_with_database(_add)


@app.command("list")
def list_mailboxes(
    business_id: str = typer.Argument(..., help="비즈니스 ID"),
):
    """비즈니스의 메일박스 목록을 조회합니다."""

    async def _list(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            mailboxes = await factory.create_mailbox_management_usecase(session).list_mailboxes(business_id)

        if not mailboxes:
            console.print("[yellow]등록된 메일박스가 없습니다.[/yellow]")
            return

        table = Table(title=f"메일박스 목록 ({business_id})")
        table.add_column("ID", style="cyan")
        table.add_column("주소", style="green")
        table.add_column("상태")
        table.add_column("마지막 동기화")
        table.add_column("웹훅 만료")

        for mailbox in mailboxes:
            table.add_row(
                str(mailbox.id),
                mailbox.mailbox_address,
                mailbox.sync_status.value,
                mailbox.last_sync_at.strftime("%Y-%m-%d %H:%M") if mailbox.last_sync_at else "-",
                mailbox.webhook_expires_at.strftime("%Y-%m-%d %H:%M") if mailbox.webhook_expires_at else "-",
            )

        console.print(table)

    _run_with_database(_list)


@app.command("sync")
def sync_mailbox(
    mailbox_id: UUID = typer.Argument(..., help="메일박스 ID"),
):
    """메일박스 하나를 동기화합니다."""

    async def _sync(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            report = await factory.create_mail_sync_usecase(session).sync_mailbox(mailbox_id)
        _print_report(report)

    _run_with_database(_sync)


@app.command("sync-all")
def sync_all_mailboxes():
    """동기화 가능한 모든 메일박스를 병렬로 동기화합니다."""

    async def _sync_all(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            mailboxes = await factory.create_mailbox_repository(session).list_syncable()

        outcomes = await factory.create_sync_engine(db).sync_all_mailboxes([m.id for m in mailboxes])

        for mailbox_id, outcome in outcomes.items():
            if isinstance(outcome, MailSyncError):
                console.print(f"[red]✗ {mailbox_id}: {outcome}[/red]")
            else:
                _print_report(outcome)

        console.print(f"[blue]총 {len(outcomes)}개 메일박스 처리[/blue]")

    _run_with_database(_sync_all)


@app.command("subscribe")
def subscribe_mailbox(
    mailbox_id: UUID = typer.Argument(..., help="메일박스 ID"),
):
    """웹훅 구독을 생성하거나 연장합니다."""

    async def _subscribe(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            mailbox = await factory.create_mailbox_management_usecase(session).ensure_subscription(mailbox_id)

        console.print("[green]✓ 웹훅 구독 완료[/green]")
        console.print(f"구독 ID: {mailbox.webhook_subscription_id}")
        console.print(f"만료: {mailbox.webhook_expires_at}")

    _run_with_database(_subscribe)


@app.command("renew-subscriptions")
def renew_subscriptions(
    hours: int = typer.Option(24, help="지금부터 이 시간 안에 만료되는 구독을 연장"),
):
    """만료가 임박한 웹훅 구독을 연장합니다."""

    async def _renew(factory: AdapterFactory, db: DatabaseAdapter):
        async with db.get_session() as session:
            usecase = factory.create_mailbox_management_usecase(session)
            renewed, failed = await usecase.renew_expiring_subscriptions(timedelta(hours=hours))

        console.print(f"[green]연장 성공: {renewed}[/green]")
        if failed:
            console.print(f"[red]연장 실패: {failed}[/red]")

    _run_with_database(_renew)
