"""
자동 연결 유즈케이스

메일 참여자 주소로 CRM 연락처를 찾아 연락처/회사/딜을 메일에 연결합니다.
"""

from typing import List, Optional

from ..domain.entities import Deal, LinkResult, NormalizedEmail
from ..domain.ports import CrmDirectoryPort, LoggerPort


class AutoLinker:
    """메일 자동 연결기"""

    def __init__(self, crm_directory: CrmDirectoryPort, logger: LoggerPort):
        self.crm_directory = crm_directory
        self.logger = logger

    async def auto_link(self, business_id: str, email: NormalizedEmail) -> LinkResult:
        """
        메일을 CRM 레코드에 연결합니다.

        발신자, 수신자, 참조 순서로 처음 일치하는 연락처를 사용합니다.
        연락처의 진행 중인 딜이 없으면 회사의 진행 중인 딜을 찾고,
        정확히 하나일 때만 딜을 연결합니다.

        Args:
            business_id: 비즈니스 ID (조회 범위)
            email: 정규화된 메일

        Returns:
            LinkResult (일치하는 연락처가 없으면 모두 비어 있음)
        """
        for address in email.participants():
            contact = await self.crm_directory.find_contact_by_address(business_id, address)
            if contact is None:
                continue

            deal_id = await self._resolve_deal(business_id, contact.id, contact.company_id)
            result = LinkResult(
                contact_id=contact.id,
                company_id=contact.company_id,
                deal_id=deal_id,
            )
            self.logger.debug(
                f"자동 연결: contact={result.contact_id}, company={result.company_id}, deal={result.deal_id}",
                provider_message_id=email.provider_message_id,
            )
            return result

        return LinkResult()

    async def _resolve_deal(self, business_id: str, contact_id: str, company_id: Optional[str]) -> Optional[str]:
        deals = await self.crm_directory.find_open_deals_for_contact(business_id, contact_id)
        if not deals and company_id:
            deals = await self.crm_directory.find_open_deals_for_company(business_id, company_id)
        return self._single(deals)

    @staticmethod
    def _single(deals: List[Deal]) -> Optional[str]:
        """딜이 정확히 하나면 ID, 아니면 None (소유가 모호하면 연결하지 않음)"""
        if len(deals) == 1:
            return deals[0].id
        return None
