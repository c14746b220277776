from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    private_key: str | None
    mnemonic: str | None
    arbitrum_rpc_url: str
    apechain_rpc_url: str
    marketplace_api_base: str
    marketplace_chain: str
    price_api_base: str
    price_coin_id: str
    bid_currency_address: str
    watch_db_path: str
    settlement_interval_seconds: int
    health_log_interval_seconds: int
    settlement_claim_ttl_seconds: float
    wait_for_receipt: bool
    receipt_timeout_seconds: float
    telegram_bot_token: str | None
    telegram_chat_id: str | None
    smtp_host: str | None
    smtp_port: int
    smtp_sender: str | None
    smtp_username: str | None
    smtp_password: str | None
    smtp_use_tls: bool
    log_level: str


def _optional_str(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _optional_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def load_settings() -> Settings:
    load_dotenv()
    private_key = _optional_str("PRIVATE_KEY")
    mnemonic = _optional_str("MNEMONIC")
    if not private_key and not mnemonic:
        raise ValueError("Missing required environment variable: PRIVATE_KEY or MNEMONIC")

    return Settings(
        private_key=private_key,
        mnemonic=mnemonic,
        arbitrum_rpc_url=os.getenv("ARBITRUM_RPC_URL", "https://arbitrum.llamarpc.com").strip(),
        apechain_rpc_url=os.getenv("APECHAIN_RPC_URL", "https://rpc.apechain.com").strip(),
        marketplace_api_base=os.getenv(
            "MAGICEDEN_API_BASE", "https://api-mainnet.magiceden.dev"
        ).strip(),
        marketplace_chain=os.getenv("MARKETPLACE_CHAIN", "apechain").strip(),
        price_api_base=os.getenv("PRICE_API_BASE", "https://api.coingecko.com/api/v3").strip(),
        price_coin_id=os.getenv("PRICE_COIN_ID", "apecoin").strip(),
        bid_currency_address=os.getenv(
            "BID_CURRENCY_ADDRESS", "0x48b62137edfa95a428d35c09e44256a739f6b557"
        ).strip(),
        watch_db_path=os.getenv("WATCH_DB_PATH", "data/watch_requests.db").strip(),
        settlement_interval_seconds=_optional_int("SETTLEMENT_INTERVAL_SECONDS", 60),
        health_log_interval_seconds=_optional_int("HEALTH_LOG_INTERVAL_SECONDS", 300),
        settlement_claim_ttl_seconds=_optional_float("SETTLEMENT_CLAIM_TTL_SECONDS", 900.0),
        wait_for_receipt=_optional_bool("WAIT_FOR_RECEIPT", True),
        receipt_timeout_seconds=_optional_float("RECEIPT_TIMEOUT_SECONDS", 180.0),
        telegram_bot_token=_optional_str("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_optional_str("TELEGRAM_CHAT_ID"),
        smtp_host=_optional_str("SMTP_HOST"),
        smtp_port=_optional_int("SMTP_PORT", 587),
        smtp_sender=_optional_str("SMTP_SENDER"),
        smtp_username=_optional_str("SMTP_USERNAME"),
        smtp_password=_optional_str("SMTP_PASSWORD"),
        smtp_use_tls=_optional_bool("SMTP_USE_TLS", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
