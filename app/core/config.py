# app/core/config.py
# 應用程式設定 (資料庫連線字串、分期付款引擎參數等)
from decimal import Decimal
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 資料庫設定
    DATABASE_URL: str
    # (可選) 設為 True 會在 console 印出 SQL 語句
    SQL_ECHO: bool = False
    # 啟動時自動建立資料表 (本機開發用，正式環境走 migration)
    AUTO_CREATE_TABLES: bool = False

    # --- 分期付款 / 託管 ---
    # 平台手續費比例 (僅記錄，不影響撥款)
    PLATFORM_FEE_RATE: Decimal = Decimal("0.12")
    # 新建交易與託管帳戶的幣別
    DEFAULT_CURRENCY: str = "USD"
    # 金額比對容許誤差 (付款金額、比例總和)
    AMOUNT_TOLERANCE: Decimal = Decimal("0.01")

    # 環境變數檔案
    class Config:
        env_file = ".env"

# 建立設定實例
settings = Settings()
