"""
CRM 조회 어댑터

자동 연결과 수동 연결 검증에 필요한 연락처/회사/딜 조회를 담당합니다.
모든 조회는 비즈니스 범위로 제한됩니다.
"""

from typing import List, Optional

from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.domain.entities import CLOSED_DEAL_STAGES, Contact, Deal
from core.domain.ports import CrmDirectoryPort
from .models import CompanyModel, ContactModel, DealModel


_RECORD_MODELS = {
    "contact": ContactModel,
    "company": CompanyModel,
    "deal": DealModel,
}


class CrmDirectoryAdapter(CrmDirectoryPort):
    """CRM 조회 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_contact_by_address(self, business_id: str, address: str) -> Optional[Contact]:
        """이메일 주소로 연락처를 조회합니다. (대소문자 무시)"""
        stmt = (
            select(ContactModel)
            .where(
                and_(
                    ContactModel.business_id == business_id,
                    func.lower(ContactModel.email) == address.strip().lower(),
                )
            )
            .order_by(ContactModel.created_at)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None

        return Contact(
            id=model.id,
            business_id=model.business_id,
            email=model.email,
            company_id=model.company_id,
        )

    async def find_open_deals_for_contact(self, business_id: str, contact_id: str) -> List[Deal]:
        """연락처의 진행 중인 딜을 조회합니다."""
        return await self._find_open_deals(business_id, DealModel.contact_id == contact_id)

    async def find_open_deals_for_company(self, business_id: str, company_id: str) -> List[Deal]:
        """회사의 진행 중인 딜을 조회합니다."""
        return await self._find_open_deals(business_id, DealModel.company_id == company_id)

    async def _find_open_deals(self, business_id: str, condition) -> List[Deal]:
        stmt = select(DealModel).where(
            and_(
                DealModel.business_id == business_id,
                condition,
                DealModel.stage.notin_(CLOSED_DEAL_STAGES),
            )
        )
        result = await self.session.execute(stmt)
        return [
            Deal(
                id=model.id,
                business_id=model.business_id,
                contact_id=model.contact_id,
                company_id=model.company_id,
                stage=model.stage,
            )
            for model in result.scalars().all()
        ]

    async def record_exists(self, business_id: str, kind: str, record_id: str) -> bool:
        """비즈니스 내 레코드 존재 여부를 확인합니다."""
        model = _RECORD_MODELS.get(kind)
        if model is None:
            raise ValueError(f"알 수 없는 레코드 종류입니다: {kind}")

        stmt = select(model.id).where(
            and_(model.id == record_id, model.business_id == business_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
