"""
메일 동기화 유즈케이스

메일박스의 설정된 폴더를 공급자와 동기화합니다.
- 델타 링크가 없는 폴더: 전체 동기화 (최근 N개 범위로 제한한 베이스라인 델타를 저장하고 링크 확보)
- 델타 링크가 있는 폴더: 증분 동기화 (변경/삭제 반영 후 새 링크 저장)

폴더 실패는 해당 폴더에만 기록되고, 자격 증명 문제는 메일박스 전체를 중단합니다.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union
from uuid import UUID

from ..domain.entities import (
    Email,
    FolderSyncResult,
    FolderSyncState,
    Mailbox,
    MailboxSyncReport,
    MailboxSyncStatus,
    SyncMode,
    now_utc,
)
from ..domain.exceptions import (
    AuthenticationFailed,
    CredentialInactive,
    CredentialNotFound,
    FolderSyncFailed,
    MailboxNotFound,
    MailboxSyncAborted,
    MailSyncError,
    ProviderError,
    RefreshFailed,
    TokenDecryptionError,
)
from ..domain.graph_types import GraphMailFolder, GraphMessage
from ..domain.ports import (
    EmailRepositoryPort,
    LoggerPort,
    MailboxRepositoryPort,
    MailProviderPort,
)
from .auto_linker import AutoLinker
from .message_processor import parse_timestamp, process_message


# 메일박스 전체 동기화를 중단시키는 자격 증명 오류
CREDENTIAL_ERRORS = (CredentialNotFound, CredentialInactive, RefreshFailed, TokenDecryptionError)

# 해당 폴더만 실패 처리하는 오류
FOLDER_ERRORS = (ProviderError, AuthenticationFailed, asyncio.TimeoutError)

# 저장된 델타 링크가 만료되었을 때 공급자가 반환하는 상태 코드
DELTA_TOKEN_EXPIRED = 410

# 전체 동기화 범위를 정할 때 필요한 필드
RECENT_WINDOW_FIELDS = ["id", "receivedDateTime"]

MailProviderFactory = Callable[[Mailbox], MailProviderPort]


class MessageImporter:
    """공급자 메시지 한 건을 정규화, 자동 연결 후 없을 때만 저장합니다."""

    def __init__(
        self,
        email_repository: EmailRepositoryPort,
        auto_linker: AutoLinker,
        logger: LoggerPort,
    ):
        self.email_repository = email_repository
        self.auto_linker = auto_linker
        self.logger = logger

    async def import_message(self, mailbox: Mailbox, message: Union[GraphMessage, dict]) -> bool:
        """
        메시지를 저장합니다.

        Returns:
            bool: 새로 저장했으면 True, 이미 있거나 방향 필터로 제외되면 False
        """
        normalized = process_message(message, mailbox.mailbox_address)

        if not mailbox.accepts(normalized.direction):
            self.logger.debug(
                f"방향 필터로 제외: {normalized.direction.value}",
                provider_message_id=normalized.provider_message_id,
            )
            return False

        if await self.email_repository.exists_by_provider_id(normalized.provider_message_id):
            return False

        links = await self.auto_linker.auto_link(mailbox.business_id, normalized)
        email = Email.from_normalized(normalized, mailbox, links)
        return await self.email_repository.create_if_absent(email)


class MailboxSyncUseCase:
    """메일박스 단위 동기화 유즈케이스"""

    def __init__(
        self,
        mailbox_repository: MailboxRepositoryPort,
        email_repository: EmailRepositoryPort,
        auto_linker: AutoLinker,
        mail_provider_factory: MailProviderFactory,
        logger: LoggerPort,
        page_size: int = 100,
        folder_timeout: float = 300.0,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.mailbox_repository = mailbox_repository
        self.email_repository = email_repository
        self.mail_provider_factory = mail_provider_factory
        self.logger = logger
        self.page_size = page_size
        self.folder_timeout = folder_timeout
        self.clock = clock
        self.importer = MessageImporter(email_repository, auto_linker, logger)

    async def sync_mailbox(self, mailbox_id: UUID) -> MailboxSyncReport:
        """
        메일박스를 동기화합니다.

        Args:
            mailbox_id: 메일박스 ID

        Returns:
            폴더별 결과가 담긴 동기화 보고서

        Raises:
            MailboxNotFound: 메일박스가 없는 경우
            MailboxSyncAborted: 자격 증명 문제로 중단된 경우 (상태는 ERROR로 기록)
        """
        mailbox = await self.mailbox_repository.get_by_id(mailbox_id)
        if mailbox is None:
            raise MailboxNotFound(mailbox_id)

        self.logger.info(f"메일박스 동기화 시작: {mailbox.mailbox_address}", mailbox_id=mailbox.id)

        report = MailboxSyncReport(mailbox_id=mailbox.id, started_at=self.clock())
        provider = self.mail_provider_factory(mailbox)

        try:
            folders = await self._select_folders(mailbox, provider, report)
            for folder in folders:
                report.folders.append(await self._sync_folder(mailbox, provider, folder))

        except CREDENTIAL_ERRORS as e:
            await self.mailbox_repository.update_sync_state(mailbox.id, MailboxSyncStatus.ERROR)
            self.logger.error(f"메일박스 동기화 중단: {e}", mailbox_id=mailbox.id)
            raise MailboxSyncAborted(mailbox.id, e) from e

        report.completed_at = self.clock()
        report.sync_status = MailboxSyncStatus.ACTIVE

        if report.is_complete_success():
            await self.mailbox_repository.update_sync_state(
                mailbox.id, MailboxSyncStatus.ACTIVE, last_sync_at=report.completed_at
            )
        else:
            # 일부 실패 시 last_sync_at은 그대로 두어 지연 상태가 드러나게 함
            await self.mailbox_repository.update_sync_state(mailbox.id, MailboxSyncStatus.ACTIVE)

        self.logger.info(
            f"메일박스 동기화 완료: 저장 {report.imported}, 건너뜀 {report.skipped}, "
            f"삭제 {report.deleted}, 실패 폴더 {report.failed_folders}",
            mailbox_id=mailbox.id,
        )
        return report

    async def _select_folders(
        self,
        mailbox: Mailbox,
        provider: MailProviderPort,
        report: MailboxSyncReport,
    ) -> List[GraphMailFolder]:
        """설정된 폴더 이름과 대소문자 구분 없이 일치하는 공급자 폴더를 고릅니다."""
        try:
            folders = await provider.list_folders()
        except (ProviderError, AuthenticationFailed) as e:
            report.error = f"폴더 목록 조회 실패: {e}"
            self.logger.error(report.error, mailbox_id=mailbox.id)
            return []

        wanted = {name.strip().lower() for name in mailbox.sync_folders}
        return [folder for folder in folders if folder.display_name.strip().lower() in wanted]

    async def _sync_folder(
        self,
        mailbox: Mailbox,
        provider: MailProviderPort,
        folder: GraphMailFolder,
    ) -> FolderSyncResult:
        """폴더 하나를 제한 시간 안에서 동기화합니다. (IDLE -> SYNCING -> IDLE/ERROR)"""
        delta_token = mailbox.delta_token_for(folder.id)
        result = FolderSyncResult(
            folder_id=folder.id,
            folder_name=folder.display_name,
            mode=SyncMode.DELTA if delta_token else SyncMode.FULL,
            state=FolderSyncState.SYNCING,
        )

        try:
            await asyncio.wait_for(
                self._run_folder(mailbox, provider, folder, delta_token, result),
                timeout=self.folder_timeout,
            )
        except FOLDER_ERRORS as e:
            failure = FolderSyncFailed(folder.display_name, e)
            result.state = FolderSyncState.ERROR
            result.error = str(failure)
            self.logger.error(str(failure), mailbox_id=mailbox.id, mode=result.mode.value)
            return result

        result.state = FolderSyncState.IDLE
        return result

    async def _run_folder(
        self,
        mailbox: Mailbox,
        provider: MailProviderPort,
        folder: GraphMailFolder,
        delta_token: Optional[str],
        result: FolderSyncResult,
    ) -> None:
        if delta_token:
            try:
                await self._delta_sync(mailbox, provider, folder, delta_token, result)
                return
            except ProviderError as e:
                if e.status_code != DELTA_TOKEN_EXPIRED:
                    raise
                self.logger.warning(
                    f"델타 링크 만료, 전체 동기화로 전환: {folder.display_name}",
                    mailbox_id=mailbox.id,
                )
                result.mode = SyncMode.FULL

        await self._full_sync(mailbox, provider, folder, result)

    async def _full_sync(
        self,
        mailbox: Mailbox,
        provider: MailProviderPort,
        folder: GraphMailFolder,
        result: FolderSyncResult,
    ) -> None:
        """
        최근 N개 범위로 제한한 베이스라인 델타를 가져와 저장하고 델타 링크를 확보합니다.

        먼저 최근 메시지의 수신 시각만 조회해 N번째 메시지의 수신 시각을 기준점으로 삼습니다.
        베이스라인 델타는 기준점 이후 수신분만 반환하므로 폴더 크기와 관계없이 비용이 일정하고,
        두 호출 사이에 도착한 메시지도 베이스라인에 포함됩니다.
        """
        window = await provider.list_recent_messages(folder.id, self.page_size, fields=RECENT_WINDOW_FIELDS)

        received_since = None
        if len(window) >= self.page_size:
            received_since = parse_timestamp(window[-1].received_date_time)

        baseline = await provider.delta_messages(folder.id, received_since=received_since)

        for item in baseline.items:
            await self._import(mailbox, item, result)

        await self.mailbox_repository.set_delta_token(mailbox.id, folder.id, baseline.delta_link)

    async def _delta_sync(
        self,
        mailbox: Mailbox,
        provider: MailProviderPort,
        folder: GraphMailFolder,
        delta_token: str,
        result: FolderSyncResult,
    ) -> None:
        """저장된 델타 링크부터 변경 사항을 반영합니다. 새 링크는 모든 쓰기 후에 저장합니다."""
        delta = await provider.delta_messages(folder.id, delta_token)

        for item in delta.items:
            await self._import(mailbox, item, result)

        for provider_message_id in delta.deleted_ids:
            result.deleted += await self.email_repository.delete_by_provider_id(provider_message_id)

        await self.mailbox_repository.set_delta_token(mailbox.id, folder.id, delta.delta_link)

    async def _import(self, mailbox: Mailbox, message: Union[GraphMessage, dict], result: FolderSyncResult) -> None:
        if await self.importer.import_message(mailbox, message):
            result.imported += 1
        else:
            result.skipped += 1


SyncUnitFactory = Callable[[], AbstractAsyncContextManager]


class SyncEngine:
    """여러 메일박스를 독립된 작업 단위로 병렬 동기화합니다."""

    def __init__(
        self,
        unit_factory: SyncUnitFactory,
        logger: LoggerPort,
        max_concurrency: int = 4,
    ):
        """
        Args:
            unit_factory: 호출할 때마다 자체 DB 세션을 가진 MailboxSyncUseCase를
                내주는 비동기 컨텍스트 매니저를 만드는 함수
            logger: 로거
            max_concurrency: 동시에 동기화할 메일박스 수
        """
        self.unit_factory = unit_factory
        self.logger = logger
        self.max_concurrency = max_concurrency

    async def sync_all_mailboxes(self, mailbox_ids: List[UUID]) -> Dict[UUID, Union[MailboxSyncReport, MailSyncError]]:
        """
        모든 메일박스를 동기화합니다. 한 메일박스의 중단은 다른 메일박스에 영향을 주지 않습니다.

        Returns:
            메일박스 ID별 보고서 또는 중단 원인 예외
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(mailbox_id: UUID) -> Union[MailboxSyncReport, MailSyncError]:
            async with semaphore:
                try:
                    async with self.unit_factory() as usecase:
                        return await usecase.sync_mailbox(mailbox_id)
                except MailSyncError as e:
                    self.logger.warning(f"메일박스 동기화 실패: {e}", mailbox_id=mailbox_id)
                    return e

        self.logger.info(f"전체 메일박스 동기화 시작: {len(mailbox_ids)}개")
        outcomes = await asyncio.gather(*(run(mailbox_id) for mailbox_id in mailbox_ids))
        return dict(zip(mailbox_ids, outcomes))
