"""
FastAPI 웹 서버

메일박스 연결(OAuth), Graph 웹훅 수신, 메일박스 관리 API를 제공합니다.
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.web.auth_routes import router as auth_router
from adapters.web.mailbox_routes import router as mailbox_router
from adapters.web.webhook_routes import router as webhook_router
from adapters.db.database import get_database_adapter, initialize_database
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger
from config.adapters import get_config

# FastAPI 앱 생성
app = FastAPI(
    title="CRM 메일박스 동기화 서비스",
    description="Microsoft 365 메일박스를 CRM과 동기화하는 API",
    version="1.0.0",
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 로거 설정
logger = create_logger("web_server")

# 라우터 등록
app.include_router(auth_router)
app.include_router(webhook_router)
app.include_router(mailbox_router)


@app.on_event("startup")
async def startup_event():
    """서버 시작 시 실행되는 이벤트"""
    logger.info("FastAPI 웹 서버 시작")

    config = get_config()
    db_adapter = initialize_database(config)
    await db_adapter.initialize()
    await db_adapter.create_tables()

    logger.info(f"환경: {config.get_environment()}")
    logger.info("웹 서버 준비 완료")


@app.on_event("shutdown")
async def shutdown_event():
    """서버 종료 시 실행되는 이벤트"""
    logger.info("FastAPI 웹 서버 종료")

    await get_database_adapter().close()


@app.get("/health")
async def health():
    """상태 확인과 웹훅 알림 실패 현황"""
    return {
        "status": "ok",
        "notification_failures": get_adapter_factory().create_failure_tracker().snapshot(),
    }


if __name__ == "__main__":
    config = get_config()

    uvicorn.run(
        "web_server:app",
        host=config.get_web_host(),
        port=config.get_web_port(),
        reload=config.is_debug(),
        log_level=config.get_log_level().lower(),
    )
