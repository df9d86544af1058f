import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _roles(name: str, default: str) -> frozenset:
    return frozenset(r.strip() for r in os.getenv(name, default).split(",") if r.strip())


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Some back-office paths let inventory staff mark a request prepared
    # straight after approval, skipping the processing step.
    ALLOW_PREPARE_FROM_APPROVED = _flag("ALLOW_PREPARE_FROM_APPROVED")

    RECENT_PAYMENTS_LIMIT = int(os.getenv("RECENT_PAYMENTS_LIMIT", "20"))

    SUBMITTER_ROLES = _roles("SUBMITTER_ROLES", "Inventory,Procurement,Administration")
    FINANCE_ROLES = _roles("FINANCE_ROLES", "Finance,Administration")
    ADMIN_ROLES = _roles("ADMIN_ROLES", "Administration")
    SUPPLIER_ROLES = _roles("SUPPLIER_ROLES", "Supplier")
