"""001 – Initial schema: profiles, geofences, attendance, off-premises workflow.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Enum-valued columns are VARCHAR + CHECK so new values need no ALTER TYPE.
DEVICE_CLASSES = ("mobile", "tablet", "laptop", "desktop")
APPROVAL_STATUSES = (
    "normal",
    "pending_supervisor_approval",
    "approved_offpremises",
    "rejected_offpremises",
)
CHECK_METHODS = ("gps", "remote_offpremises", "auto_system")


def _in(column: str, values: tuple[str, ...]) -> str:
    vals = ", ".join(f"'{v}'" for v in values)
    return f"CHECK ({column} IN ({vals}))"


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL UNIQUE,
            code        VARCHAR(20) UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. geofence_locations ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE geofence_locations (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name           VARCHAR(150) NOT NULL UNIQUE,
            address        TEXT,
            latitude       DOUBLE PRECISION NOT NULL CHECK (latitude BETWEEN -90 AND 90),
            longitude      DOUBLE PRECISION NOT NULL CHECK (longitude BETWEEN -180 AND 180),
            radius_meters  INTEGER DEFAULT 400,
            is_active      BOOLEAN DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. user_profiles ──────────────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE user_profiles (
            id                    UUID PRIMARY KEY,
            first_name            VARCHAR(100) NOT NULL,
            last_name             VARCHAR(100),
            email                 VARCHAR(255) NOT NULL UNIQUE,
            role                  VARCHAR(32) NOT NULL DEFAULT 'staff'
                                  {_in("role", ("staff", "department_head", "regional_manager", "admin"))},
            department_id         UUID REFERENCES departments(id),
            assigned_location_id  UUID REFERENCES geofence_locations(id),
            is_active             BOOLEAN DEFAULT TRUE,
            created_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_user_profiles_department ON user_profiles(department_id)")

    # ── 4. device_radius_settings ─────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE device_radius_settings (
            device_class             VARCHAR(16) PRIMARY KEY {_in("device_class", DEVICE_CLASSES)},
            check_in_radius_meters   INTEGER NOT NULL,
            check_out_radius_meters  INTEGER NOT NULL,
            updated_at               TIMESTAMPTZ DEFAULT NOW(),
            updated_by               UUID REFERENCES user_profiles(id),
            CONSTRAINT ck_device_radius_check_in_range
                CHECK (check_in_radius_meters BETWEEN 50 AND 5000),
            CONSTRAINT ck_device_radius_check_out_range
                CHECK (check_out_radius_meters BETWEEN 50 AND 5000)
        )
    """)

    # ── 5. attendance_records ─────────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE attendance_records (
            id                                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id                            UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            attendance_date                    DATE NOT NULL,
            check_in_time                      TIMESTAMPTZ NOT NULL,
            check_in_latitude                  DOUBLE PRECISION,
            check_in_longitude                 DOUBLE PRECISION,
            check_in_location_name             VARCHAR(255),
            check_in_location_id               UUID REFERENCES geofence_locations(id),
            check_in_method                    VARCHAR(32) DEFAULT 'gps' {_in("check_in_method", CHECK_METHODS)},
            check_out_time                     TIMESTAMPTZ,
            check_out_latitude                 DOUBLE PRECISION,
            check_out_longitude                DOUBLE PRECISION,
            check_out_location_name            VARCHAR(255),
            check_out_method                   VARCHAR(32) {_in("check_out_method", CHECK_METHODS)},
            work_hours                         NUMERIC(5, 2),
            approval_status                    VARCHAR(40) NOT NULL DEFAULT 'normal'
                                               {_in("approval_status", APPROVAL_STATUSES)},
            on_official_duty_outside_premises  BOOLEAN DEFAULT FALSE,
            off_premises_request_id            UUID,
            supervisor_approval_remarks        TEXT,
            device_class                       VARCHAR(16) {_in("device_class", DEVICE_CLASSES)},
            is_late                            BOOLEAN DEFAULT FALSE,
            lateness_reason                    TEXT,
            clock_skew_flagged                 BOOLEAN DEFAULT FALSE,
            created_at                         TIMESTAMPTZ DEFAULT NOW(),
            updated_at                         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_attendance_user_date UNIQUE (user_id, attendance_date),
            CONSTRAINT ck_attendance_work_hours_non_negative
                CHECK (work_hours IS NULL OR work_hours >= 0)
        )
    """)
    op.execute("CREATE INDEX ix_attendance_records_user_id ON attendance_records(user_id)")
    op.execute(
        "CREATE INDEX ix_attendance_records_offpremises_request "
        "ON attendance_records(off_premises_request_id)"
    )

    # ── 6. pending_offpremises_checkins ───────────────────────────────────
    op.execute(f"""
        CREATE TABLE pending_offpremises_checkins (
            id                           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id                      UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            latitude                     DOUBLE PRECISION NOT NULL,
            longitude                    DOUBLE PRECISION NOT NULL,
            accuracy                     DOUBLE PRECISION,
            location_name                VARCHAR(255),
            google_maps_name             VARCHAR(255),
            device_info                  JSONB,
            device_class                 VARCHAR(16) NOT NULL {_in("device_class", DEVICE_CLASSES)},
            reason                       TEXT,
            status                       VARCHAR(16) NOT NULL DEFAULT 'pending'
                                         {_in("status", ("pending", "approved", "rejected"))},
            approved_by_id               UUID REFERENCES user_profiles(id),
            approved_at                  TIMESTAMPTZ,
            rejection_reason             TEXT,
            linked_attendance_record_id  UUID REFERENCES attendance_records(id) ON DELETE SET NULL,
            created_at                   TIMESTAMPTZ DEFAULT NOW(),
            updated_at                   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_pending_offpremises_checkins_user_id "
        "ON pending_offpremises_checkins(user_id)"
    )
    op.execute(
        "CREATE INDEX ix_offpremises_status_created "
        "ON pending_offpremises_checkins(status, created_at)"
    )

    # ── 7. staff_notifications ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE staff_notifications (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            recipient_id  UUID NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            type          VARCHAR(48) NOT NULL,
            title         VARCHAR(200) NOT NULL,
            message       TEXT NOT NULL,
            entity_type   VARCHAR(50),
            entity_id     UUID,
            data          JSONB,
            is_read       BOOLEAN DEFAULT FALSE,
            created_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_staff_notifications_recipient_id "
        "ON staff_notifications(recipient_id, is_read)"
    )

    # ── 8. audit_trail (no FKs; survives reverted attendance rows) ────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            ip_address   INET,
            user_agent   TEXT,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail(action)")

    # ── Seed: default device radii ────────────────────────────────────────
    op.execute("""
        INSERT INTO device_radius_settings
            (device_class, check_in_radius_meters, check_out_radius_meters)
        VALUES
            ('mobile',   400,  400),
            ('tablet',   400,  400),
            ('laptop',   700,  700),
            ('desktop', 2000, 1000)
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "staff_notifications",
        "pending_offpremises_checkins",
        "attendance_records",
        "device_radius_settings",
        "user_profiles",
        "geofence_locations",
        "departments",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
