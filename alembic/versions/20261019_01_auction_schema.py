"""auction schema with bid floor trigger

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Must match BID_MIN_INCREMENT in the application settings.
MIN_INCREMENT = 100

ENFORCE_BID_FLOOR_FUNCTION = f"""
CREATE OR REPLACE FUNCTION enforce_bid_floor() RETURNS trigger AS $$
DECLARE
    base_amount integer;
    current_max integer;
BEGIN
    -- Locking the auction row serializes concurrent inserts for the same auction.
    SELECT min_bid_amount INTO base_amount FROM auctions WHERE id = NEW.auction_id FOR UPDATE;
    SELECT max(bid_amount) INTO current_max FROM bids WHERE auction_id = NEW.auction_id;
    IF current_max IS NULL THEN
        IF NEW.bid_amount < base_amount THEN
            RAISE EXCEPTION 'bid below floor: % < %', NEW.bid_amount, base_amount
                USING ERRCODE = 'check_violation';
        END IF;
    ELSIF NEW.bid_amount < current_max + {MIN_INCREMENT} THEN
        RAISE EXCEPTION 'bid below floor: % < %', NEW.bid_amount, current_max + {MIN_INCREMENT}
            USING ERRCODE = 'check_violation';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _ensure_users_table(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "users"):
        return
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)


def _ensure_auction_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "auctions"):
        op.create_table(
            "auctions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("min_bid_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("image_urls", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
            sa.Column("winner_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("min_bid_amount >= 0", name="ck_auctions_min_bid_amount_non_negative"),
        )
        op.create_index("ix_auctions_id", "auctions", ["id"], unique=False)
        op.create_index("ix_auctions_is_active", "auctions", ["is_active"], unique=False)

    if not _table_exists(inspector, "bids"):
        op.create_table(
            "bids",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "auction_id",
                sa.Integer(),
                sa.ForeignKey("auctions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("bid_amount", sa.Integer(), nullable=False),
            sa.Column("bidder_name", sa.String(length=255), nullable=False),
            sa.Column("bidder_phone", sa.String(length=32), nullable=False),
            sa.Column("is_winner", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("bid_amount > 0", name="ck_bids_bid_amount_positive"),
        )
        op.create_index("ix_bids_id", "bids", ["id"], unique=False)
        op.create_index("ix_bids_auction_id", "bids", ["auction_id"], unique=False)
        op.create_index("ix_bids_auction_amount", "bids", ["auction_id", "bid_amount"], unique=False)


def _install_floor_trigger() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    op.execute(sa.text(ENFORCE_BID_FLOOR_FUNCTION))
    op.execute(sa.text("DROP TRIGGER IF EXISTS bids_enforce_floor ON bids"))
    op.execute(
        sa.text(
            "CREATE TRIGGER bids_enforce_floor BEFORE INSERT ON bids "
            "FOR EACH ROW EXECUTE FUNCTION enforce_bid_floor()"
        )
    )


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _ensure_users_table(inspector)
    inspector = sa.inspect(bind)
    _ensure_auction_tables(inspector)
    _install_floor_trigger()


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(sa.text("DROP TRIGGER IF EXISTS bids_enforce_floor ON bids"))
        op.execute(sa.text("DROP FUNCTION IF EXISTS enforce_bid_floor()"))

    inspector = sa.inspect(bind)
    if _table_exists(inspector, "bids"):
        op.drop_table("bids")
    if _table_exists(inspector, "auctions"):
        op.drop_table("auctions")
    if _table_exists(inspector, "users"):
        op.drop_table("users")
