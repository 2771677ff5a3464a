from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

# 建立非同步引擎
engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True, # 每次從連線池取連線前，先 PING 一次，確保連線有效
    echo=settings.SQL_ECHO,
)

# 建立非同步 Session
# (注意) 分期付款引擎自行 commit / rollback，一個 Service 方法就是一個交易單位
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# 建立 ORM Model 基底類別
Base = declarative_base()

async def init_models(bind: AsyncEngine = engine) -> None:
    """
    建立尚未存在的資料表 (contracts / contract_stages / escrow_transactions / escrow_accounts)
    正式環境的 schema 由 migration 管理，只在 AUTO_CREATE_TABLES=True 時於啟動時呼叫
    """
    # 確保所有 Model 都已註冊到 Base.metadata
    from app.models import contract, escrow  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"資料表初始化完成: {sorted(Base.metadata.tables)}")

# (重要) 取得 DB Session 的 Dependency
async def get_db() -> AsyncSession:
    """FastAPI Dependency: 取得非同步資料庫 session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
