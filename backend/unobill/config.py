from __future__ import annotations

import os

DEFAULT_MEMBERS = (
    "Ngoc Bao",
    "Quang Chien",
    "Khac Dat",
    "Thien Duc",
    "Trong Duc",
    "Khanh Ngoc",
    "Kim Khanh",
    "Mai Trang",
    "Su Uyen",
    "Duc Thuc",
    "Ngoc Son",
)


def _members_from_env(raw: str) -> tuple:
    names = tuple(n.strip() for n in raw.split(",") if n.strip())
    return names or DEFAULT_MEMBERS


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
    SETTLEMENT_MODE = os.getenv("SETTLEMENT_MODE", "hub").strip().lower()
    DEFAULT_MEMBERS = _members_from_env(os.getenv("DEFAULT_MEMBERS", ""))
