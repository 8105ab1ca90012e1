"""
Domain 패키지

도메인 엔티티, 예외, Graph 페이로드 구조체, 포트를 정의합니다.
외부 의존성 없이 순수한 비즈니스 규칙만 포함합니다.

주요 엔티티:
- Credential: 암호화된 OAuth 토큰을 보관하는 자격 증명
- Mailbox: 동기화 대상 메일박스와 폴더별 델타 링크
- Email: CRM에 저장되는 메일 (공급자 메시지 ID로 유일)
- NormalizedEmail: 공급자 메시지를 정규화한 표현
- LinkResult: 연락처/회사/딜 자동 연결 결과
"""
