"""initial_tasting_schema

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2025-06-02 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import String, Integer, Text, Boolean, DateTime
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision = "3c1f0a9d2b7e"
down_revision = None
branch_labels = None
depends_on = None


def get_dialect_name():
    """Get the current database dialect name"""
    bind = op.get_bind()
    return bind.dialect.name


def common_columns(id_type):
    return [
        sa.Column("id", id_type, nullable=False, comment="Primary key using UUID"),
        sa.Column("created_at", DateTime(timezone=True), nullable=False,
                  comment="Timestamp when record was created"),
        sa.Column("updated_at", DateTime(timezone=True), nullable=False,
                  comment="Timestamp when record was last updated"),
        sa.Column("active", Boolean(), nullable=False, server_default=sa.true(), comment="Soft delete flag"),
    ]


def upgrade() -> None:
    """Create package content and live session tables"""

    dialect_name = get_dialect_name()
    print(f"Creating tasting tables for dialect: {dialect_name}")

    # UUID/JSONB on PostgreSQL, string/JSON everywhere else
    id_type = UUID(as_uuid=True) if dialect_name == "postgresql" else String(length=36)
    json_type = JSONB() if dialect_name == "postgresql" else sa.JSON()

    op.create_table(
        "packages",
        *common_columns(id_type),
        sa.Column("code", String(length=10), nullable=False, comment="Short package code (e.g., WINE01)"),
        sa.Column("name", Text(), nullable=False, comment="Package name"),
        sa.Column("description", Text(), nullable=True, comment="Package description"),
        sa.Column("image_url", Text(), nullable=True, comment="Cover image reference"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_packages_code", "packages", ["code"], unique=True)
    print("✅ Created packages table")

    op.create_table(
        "package_wines",
        *common_columns(id_type),
        sa.Column("package_id", id_type, nullable=False, comment="Reference to package"),
        sa.Column("position", Integer(), nullable=False, comment="Presentation order within the package"),
        sa.Column("wine_name", Text(), nullable=False, comment="Wine name"),
        sa.Column("wine_description", Text(), nullable=True, comment="Wine description"),
        sa.Column("wine_image_url", Text(), nullable=True, comment="Wine image reference"),
        sa.Column("wine_type", String(length=50), nullable=True, comment="red, white, rosé, sparkling, dessert"),
        sa.Column("vintage", Integer(), nullable=True, comment="Wine vintage year"),
        sa.Column("region", Text(), nullable=True, comment="Wine region"),
        sa.Column("producer", Text(), nullable=True, comment="Wine producer/winery"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("package_id", "position", name="uq_package_wines_package_position"),
    )
    op.create_index("ix_package_wines_package_id", "package_wines", ["package_id"])
    print("✅ Created package_wines table")

    op.create_table(
        "slides",
        *common_columns(id_type),
        sa.Column("package_id", id_type, nullable=False, comment="Owning package"),
        sa.Column("package_wine_id", id_type, nullable=True, comment="Owning wine; null for package-level slides"),
        sa.Column("position", Integer(), nullable=False, comment="Integer-scaled fractional position within the wine"),
        sa.Column("global_position", Integer(), nullable=False, server_default="0",
                  comment="Legacy package-wide ordering hint"),
        sa.Column("type", String(length=50), nullable=False, comment="Slide type"),
        sa.Column("section_type", String(length=20), nullable=True, comment="Section within the wine"),
        sa.Column("payload_json", json_type, nullable=False, comment="Type-specific payload"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_wine_id"], ["package_wines.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("package_wine_id", "position", name="uq_slides_wine_position"),
    )
    op.create_index("ix_slides_package_id", "slides", ["package_id"])
    op.create_index("ix_slides_package_wine_id", "slides", ["package_wine_id"])
    op.create_index("idx_slides_package_wine_position", "slides", ["package_wine_id", "position"])
    print("✅ Created slides table")

    op.create_table(
        "sessions",
        *common_columns(id_type),
        sa.Column("package_id", id_type, nullable=False, comment="Package being tasted"),
        sa.Column("short_code", String(length=8), nullable=False, comment="Join code shown to guests"),
        sa.Column("status", String(length=20), nullable=False, server_default="waiting", comment="Session status"),
        sa.Column("completed_at", DateTime(timezone=True), nullable=True, comment="When the session was completed"),
        sa.Column("active_participants", Integer(), nullable=False, server_default="0",
                  comment="Joined participant count"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["package_id"], ["packages.id"]),
    )
    op.create_index("ix_sessions_package_id", "sessions", ["package_id"])
    op.create_index("ix_sessions_short_code", "sessions", ["short_code"], unique=True)
    print("✅ Created sessions table")

    op.create_table(
        "session_wine_selections",
        *common_columns(id_type),
        sa.Column("session_id", id_type, nullable=False, comment="Reference to session"),
        sa.Column("package_wine_id", id_type, nullable=False, comment="Reference to package wine"),
        sa.Column("position", Integer(), nullable=False, comment="Host-chosen order"),
        sa.Column("is_included", Boolean(), nullable=False, server_default=sa.true(),
                  comment="Wine is part of this session"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["package_wine_id"], ["package_wines.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("session_id", "package_wine_id", name="uq_session_wine"),
    )
    op.create_index("ix_session_wine_selections_session_id", "session_wine_selections", ["session_id"])
    op.create_index("idx_session_wines_session_position", "session_wine_selections", ["session_id", "position"])
    print("✅ Created session_wine_selections table")

    op.create_table(
        "participants",
        *common_columns(id_type),
        sa.Column("session_id", id_type, nullable=False, comment="Reference to session"),
        sa.Column("email", String(length=255), nullable=True, comment="Optional email"),
        sa.Column("display_name", String(length=100), nullable=False, comment="Name shown to the group"),
        sa.Column("is_host", Boolean(), nullable=False, server_default=sa.false(), comment="Host controls pacing"),
        sa.Column("progress_ptr", Integer(), nullable=False, server_default="0",
                  comment="Playback cursor (step index, -1 once complete)"),
        sa.Column("current_slide_id", id_type, nullable=True,
                  comment="Slide at the cursor, used to resume after content changes"),
        sa.Column("last_active", DateTime(timezone=True), nullable=False, comment="Last navigation or answer"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_participants_session_id", "participants", ["session_id"])
    print("✅ Created participants table")

    op.create_table(
        "responses",
        *common_columns(id_type),
        sa.Column("participant_id", id_type, nullable=False, comment="Reference to participant"),
        sa.Column("slide_id", id_type, nullable=False, comment="Reference to slide"),
        sa.Column("answer_json", json_type, nullable=False, comment="Answer payload"),
        sa.Column("answered_at", DateTime(timezone=True), nullable=False, comment="Last time answered"),
        sa.Column("synced", Boolean(), nullable=False, server_default=sa.true(), comment="False while queued offline"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["participant_id"], ["participants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["slide_id"], ["slides.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("participant_id", "slide_id", name="uq_responses_participant_slide"),
    )
    op.create_index("ix_responses_participant_id", "responses", ["participant_id"])
    op.create_index("ix_responses_slide_id", "responses", ["slide_id"])
    op.create_index("ix_responses_synced", "responses", ["synced"])
    print("✅ Created responses table")

    print("🎉 Tasting schema created successfully!")


def downgrade() -> None:
    """Drop package content and live session tables"""

    # Drop tables in reverse order to handle foreign key constraints
    tables_to_drop = [
        "responses",
        "participants",
        "session_wine_selections",
        "sessions",
        "slides",
        "package_wines",
        "packages",
    ]

    for table_name in tables_to_drop:
        op.drop_table(table_name)
        print(f"✅ Dropped {table_name} table")

    print("🗑️  Tasting schema dropped successfully!")
