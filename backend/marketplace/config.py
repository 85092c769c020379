# backend/marketplace/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/marketplace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///marketplace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment provider (Stripe Connect platform account)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")

    # Platform commission taken from each store's share of a payment
    PLATFORM_FEE_PERCENT = os.environ.get("PLATFORM_FEE_PERCENT", "5")

    # Seller funds stay pending for this many days after a payment
    BALANCE_HOLD_DAYS = int(os.environ.get("BALANCE_HOLD_DAYS", "7"))

    # Smallest payout a store may request, in the store currency
    PAYOUT_MINIMUM_AMOUNT = os.environ.get("PAYOUT_MINIMUM_AMOUNT", "20.00")

    INVOICE_EXPIRY_DAYS = int(os.environ.get("INVOICE_EXPIRY_DAYS", "30"))
    APP_URL = os.environ.get("APP_URL", "http://localhost:3000")
    MAIL_FROM = os.environ.get("MAIL_FROM", "Golden Hive <orders@goldenhive.local>")

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
