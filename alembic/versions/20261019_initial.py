"""
Initial schema for the FX trade hub.

Creates the STP tables (message_in, trade, trade_system_link,
trade_workflow_event), the leader lease and the reference-data tables
read by the parsers.  They correspond to the SQLAlchemy metadata in
``hub/src/fxhub/storage/database.py``.

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.Numeric(precision=28, scale=10)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create STP, lease and reference-data tables."""
    op.create_table(
        "message_in",
        sa.Column("message_in_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_type", sa.String(16), nullable=False),
        sa.Column("source_venue_code", sa.String(32), nullable=False),
        sa.Column("session_key", sa.String(64)),
        _ts("received_utc", nullable=False),
        _ts("source_timestamp"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parsed_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("parsed_utc"),
        sa.Column("parse_error", sa.Text()),
        sa.Column("raw_payload", sa.Text(), nullable=False),
        sa.Column("email_subject", sa.String(512)),
        sa.Column("email_from", sa.String(256)),
        sa.Column("email_to", sa.String(512)),
        sa.Column("fix_msg_type", sa.String(8)),
        sa.Column("fix_seq_num", sa.Integer()),
        sa.Column("source_message_key", sa.String(128)),
        sa.Column("raw_payload_hash", sa.String(64)),
    )
    op.create_index("ix_message_in_raw_payload_hash", "message_in", ["raw_payload_hash"])

    op.create_table(
        "trade",
        sa.Column("stp_trade_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("trade_id", sa.String(128), nullable=False, unique=True),
        sa.Column("product_type", sa.String(32), nullable=False),
        sa.Column("source_type", sa.String(16), nullable=False),
        sa.Column("source_venue_code", sa.String(32), nullable=False),
        sa.Column("message_in_id", sa.Integer()),
        sa.Column("counterparty_code", sa.String(64)),
        sa.Column("broker_code", sa.String(64)),
        sa.Column("trader_id", sa.String(64)),
        sa.Column("inv_id", sa.String(64)),
        sa.Column("reporting_entity_id", sa.String(64)),
        sa.Column("currency_pair", sa.String(6)),
        sa.Column("mic", sa.String(8)),
        sa.Column("isin", sa.String(16)),
        sa.Column("trade_date", sa.Date(), nullable=False),
        _ts("execution_time_utc", nullable=False),
        sa.Column("buy_sell", sa.String(8)),
        sa.Column("notional", AMOUNT),
        sa.Column("notional_currency", sa.String(3)),
        sa.Column("settlement_date", sa.Date()),
        sa.Column("near_settlement_date", sa.Date()),
        sa.Column("is_non_deliverable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fixing_date", sa.Date()),
        sa.Column("fixing_source", sa.String(64)),
        sa.Column("settlement_currency", sa.String(3)),
        sa.Column("uti", sa.String(64)),
        sa.Column("tvtic", sa.String(64)),
        sa.Column("margin", AMOUNT),
        sa.Column("hedge_rate", AMOUNT),
        sa.Column("spot_rate", AMOUNT),
        sa.Column("swap_points", AMOUNT),
        sa.Column("hedge_type", sa.String(16)),
        sa.Column("call_put", sa.String(8)),
        sa.Column("strike", AMOUNT),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("cut", sa.String(16)),
        sa.Column("premium", AMOUNT),
        sa.Column("premium_currency", sa.String(3)),
        sa.Column("premium_date", sa.Date()),
        sa.Column("portfolio_mx3", sa.String(64)),
        sa.Column("calypso_book", sa.String(64)),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("last_updated_utc", nullable=False),
    )
    op.create_index("ix_trade_message_in_id", "trade", ["message_in_id"])

    op.create_table(
        "trade_system_link",
        sa.Column("link_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stp_trade_id", sa.Integer(), nullable=False),
        sa.Column("system_code", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("external_trade_id", sa.String(128)),
        sa.Column("error_code", sa.String(64)),
        sa.Column("last_error", sa.Text()),
        sa.Column("portfolio_code", sa.String(64)),
        sa.Column("book_flag", sa.Boolean()),
        sa.Column("stp_mode", sa.String(8), nullable=False),
        sa.Column("imported_by", sa.String(64), nullable=False),
        sa.Column("booked_by", sa.String(64)),
        _ts("first_booked_utc"),
        _ts("last_booked_utc"),
        sa.Column("stp_flag", sa.Boolean()),
        _ts("created_utc", nullable=False),
        _ts("last_updated_utc", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_trade_system_link_stp_trade_id", "trade_system_link", ["stp_trade_id"])

    op.create_table(
        "trade_workflow_event",
        sa.Column("event_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stp_trade_id", sa.Integer(), nullable=False),
        sa.Column("system_code", sa.String(32)),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("field_name", sa.String(64)),
        sa.Column("old_value", sa.Text()),
        sa.Column("new_value", sa.Text()),
        _ts("event_time_utc", nullable=False),
        sa.Column("initiator_id", sa.String(64), nullable=False),
    )
    op.create_index(
        "ix_trade_workflow_event_stp_trade_id", "trade_workflow_event", ["stp_trade_id"]
    )

    op.create_table(
        "leader_lease",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("owner", sa.String(128), nullable=False),
        _ts("expires_utc", nullable=False),
    )

    op.create_table(
        "counterparty_name_pattern",
        sa.Column("rule_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("pattern", sa.String(256), nullable=False),
        sa.Column("counterparty_code", sa.String(64), nullable=False),
        sa.Column("source_type", sa.String(16)),
        sa.Column("source_venue_code", sa.String(32)),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "venue_trader_mapping",
        sa.Column("mapping_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_venue_code", sa.String(32), nullable=False),
        sa.Column("venue_trader_code", sa.String(64), nullable=False),
        sa.Column("internal_user_id", sa.String(64), nullable=False),
        sa.Column("inv_id", sa.String(64)),
        sa.Column("reporting_entity_id", sa.String(64)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "ccy_pair_portfolio_rule",
        sa.Column("rule_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("system_code", sa.String(32), nullable=False),
        sa.Column("currency_pair", sa.String(6), nullable=False),
        sa.Column("product_type", sa.String(32)),
        sa.Column("portfolio_code", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "calypso_book_user",
        sa.Column("trader_id", sa.String(64), primary_key=True),
        sa.Column("calypso_book", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "expiry_cut_ccy",
        sa.Column("currency_pair", sa.String(6), primary_key=True),
        sa.Column("expiry_cut", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "broker_mapping",
        sa.Column("mapping_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_venue_code", sa.String(32), nullable=False),
        sa.Column("external_broker_code", sa.String(64), nullable=False),
        sa.Column("normalized_broker_code", sa.String(64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )


def downgrade() -> None:
    """Drop all hub tables."""
    for table in (
        "broker_mapping",
        "expiry_cut_ccy",
        "calypso_book_user",
        "ccy_pair_portfolio_rule",
        "venue_trader_mapping",
        "counterparty_name_pattern",
        "leader_lease",
        "trade_workflow_event",
        "trade_system_link",
        "trade",
        "message_in",
    ):
        op.drop_table(table)
