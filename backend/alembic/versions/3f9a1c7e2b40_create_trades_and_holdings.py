"""create_trades_and_holdings

Revision ID: 3f9a1c7e2b40
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f9a1c7e2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("symbol", sa.String(length=50), nullable=False),
        sa.Column("security_name", sa.String(length=255), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("trade_type", sa.String(length=4), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("remarks", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "date", "symbol", "client_name", "trade_type", "quantity", "price",
            name="uq_trades_identity",
        ),
    )
    op.create_index("ix_trades_date", "trades", ["date"])
    op.create_index("ix_trades_client_symbol", "trades", ["client_name", "symbol"])

    op.create_table(
        "holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("symbol", sa.String(length=50), nullable=False),
        sa.Column("security_name", sa.String(length=255), nullable=False),
        sa.Column("initial_buy_date", sa.Date(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("average_buy_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("latest_price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("is_long_term", sa.Boolean(), nullable=False),
        sa.Column("gain_loss_percentage", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("holding_duration", sa.Integer(), nullable=False),
        sa.Column("closed_date", sa.Date(), nullable=True),
        sa.Column("closed_price", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_holdings_client_name", "holdings", ["client_name"])
    op.create_index("ix_holdings_initial_buy_date", "holdings", ["initial_buy_date"])
    op.create_index("ix_holdings_status", "holdings", ["status"])
    op.create_index(
        "ix_holdings_client_symbol_status", "holdings", ["client_name", "symbol", "status"]
    )
    op.create_index(
        "ix_holdings_status_gain_loss", "holdings", ["status", "gain_loss_percentage"]
    )
    op.create_index(
        "uq_holdings_open", "holdings", ["client_name", "symbol"],
        unique=True,
        postgresql_where=sa.text("status = 'HOLDING'"),
        sqlite_where=sa.text("status = 'HOLDING'"),
    )

    op.create_table(
        "initialization_status",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("is_initialized", sa.Boolean(), nullable=False),
        sa.Column("initialized_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("initialization_status")
    op.drop_index("uq_holdings_open", table_name="holdings")
    op.drop_index("ix_holdings_status_gain_loss", table_name="holdings")
    op.drop_index("ix_holdings_client_symbol_status", table_name="holdings")
    op.drop_index("ix_holdings_status", table_name="holdings")
    op.drop_index("ix_holdings_initial_buy_date", table_name="holdings")
    op.drop_index("ix_holdings_client_name", table_name="holdings")
    op.drop_table("holdings")
    op.drop_index("ix_trades_client_symbol", table_name="trades")
    op.drop_index("ix_trades_date", table_name="trades")
    op.drop_table("trades")
