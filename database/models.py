"""
SQLAlchemy ORM models for plugins, connections, credentials and webhooks.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.types import TypeDecorator

from credentials.encryption import decrypt_token, encrypt_token

# BIGINT on PostgreSQL, INTEGER on SQLite so autoincrement works in tests.
IdType = BigInteger().with_variant(Integer(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EncryptedText(TypeDecorator):
    """Text column that passes through the encryption boundary."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_token(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decrypt_token(value)


class EncryptedJSON(TypeDecorator):
    """String-keyed map stored as encrypted JSON text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt_token(json.dumps(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(decrypt_token(value))


class Base(DeclarativeBase):
    pass


class Plugin(Base):
    __tablename__ = "plugins"

    id = Column(IdType, primary_key=True, autoincrement=True)
    plugin_id = Column(String(64), unique=True, nullable=False)
    display_name = Column(String(128))
    client_id = Column(String(256))
    client_secret = Column(EncryptedText)
    secrets = Column(EncryptedJSON)
    metadata_ = Column("metadata", JsonType, default=dict)
    status = Column(String(16), nullable=False, default="ACTIVE")
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class PluginConnection(Base):
    __tablename__ = "plugin_connections"
    __table_args__ = (
        UniqueConstraint("plugin_id", "external_id", name="uq_connection_plugin_external"),
        Index("ix_connection_company_status", "company_id", "status"),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    plugin_id = Column(String(64), nullable=False)
    scope_type = Column(String(16), nullable=False, default="WORKSPACE")
    company_id = Column(String(64))
    user_id = Column(String(64))
    external_id = Column(String(256), nullable=False)
    external_name = Column(String(256))
    status = Column(String(16), nullable=False, default="ACTIVE")
    metadata_ = Column("metadata", JsonType, default=dict)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    oauth_credential = relationship(
        "OAuthCredential", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )
    api_key_credential = relationship(
        "ApiKeyCredential", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )


class OAuthCredential(Base):
    __tablename__ = "oauth_credentials"

    id = Column(IdType, primary_key=True, autoincrement=True)
    connection_id = Column(
        IdType, ForeignKey("plugin_connections.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    access_token = Column(EncryptedText, nullable=False)
    refresh_token = Column(EncryptedText)
    scope = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class ApiKeyCredential(Base):
    __tablename__ = "api_key_credentials"

    id = Column(IdType, primary_key=True, autoincrement=True)
    connection_id = Column(
        IdType, ForeignKey("plugin_connections.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    api_key = Column(EncryptedText, nullable=False)
    api_secret = Column(EncryptedText)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class WebhookEventLog(Base):
    __tablename__ = "webhook_event_logs"
    __table_args__ = (Index("ix_event_log_plugin_created", "plugin_id", "created_at"),)

    id = Column(IdType, primary_key=True, autoincrement=True)
    plugin_id = Column(String(64), nullable=False)
    connection_id = Column(IdType)
    event_type = Column(String(128))
    external_id = Column(String(256))
    payload = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, default="RECEIVED")
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)


class WebhookSubscription(Base):
    __tablename__ = "webhook_subscriptions"
    __table_args__ = (Index("ix_subscription_plugin_enabled", "plugin_id", "enabled"),)

    id = Column(IdType, primary_key=True, autoincrement=True)
    plugin_id = Column(String(64), nullable=False)
    event_type = Column(String(128))           # NULL → any event
    connection_id = Column(IdType)             # NULL → any connection
    target_type = Column(String(16), nullable=False)
    target_url = Column(Text)
    target_method = Column(String(256))        # "component.method" for INTERNAL
    filter_expr = Column(Text)
    retry_policy = Column(JsonType)            # persisted only
    enabled = Column(Boolean, nullable=False, default=True)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_now)
