"""Database migrations for SQLite schema versioning."""

from __future__ import annotations

from dataclasses import dataclass
import sqlite3

from equipment_rental.db.connection import transaction


@dataclass(frozen=True)
class Migration:
    version: int
    script: str
    requires_foreign_keys_off: bool = False


MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        script="""
        CREATE TABLE IF NOT EXISTS customers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            full_name TEXT NOT NULL,
            email TEXT,
            phone TEXT,
            created_at TEXT
        );

        CREATE TABLE IF NOT EXISTS inventory_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_code TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            category TEXT,
            brand TEXT,
            status TEXT NOT NULL DEFAULT 'available'
                CHECK (status IN ('available', 'rented', 'maintenance', 'retired')),
            condition TEXT NOT NULL DEFAULT 'good'
                CHECK (condition IN ('excellent', 'good', 'fair', 'needs-repair', 'retired')),
            rental_price REAL NOT NULL DEFAULT 0 CHECK (rental_price >= 0),
            current_renter TEXT,
            expected_return TEXT,
            total_rentals INTEGER NOT NULL DEFAULT 0 CHECK (total_rentals >= 0),
            total_revenue REAL NOT NULL DEFAULT 0 CHECK (total_revenue >= 0),
            notes TEXT,
            created_at TEXT,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS rentals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER NOT NULL,
            customer_name TEXT NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            return_date TEXT,
            status TEXT NOT NULL
                CHECK (status IN ('active', 'overdue', 'returned', 'cancelled')),
            total_amount REAL NOT NULL DEFAULT 0 CHECK (total_amount >= 0),
            insurance_cost REAL NOT NULL DEFAULT 0 CHECK (insurance_cost >= 0),
            late_fees REAL NOT NULL DEFAULT 0 CHECK (late_fees >= 0),
            damage_charges REAL NOT NULL DEFAULT 0 CHECK (damage_charges >= 0),
            waiver_collected INTEGER NOT NULL DEFAULT 0,
            notes TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            updated_at TEXT,
            FOREIGN KEY (customer_id) REFERENCES customers(id),
            CHECK (end_date >= start_date)
        );

        CREATE TABLE IF NOT EXISTS rental_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rental_id INTEGER NOT NULL,
            inventory_item_id INTEGER NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
            daily_rate REAL NOT NULL DEFAULT 0 CHECK (daily_rate >= 0),
            insurance_selected INTEGER NOT NULL DEFAULT 0,
            item_notes TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            FOREIGN KEY (rental_id) REFERENCES rentals(id) ON DELETE CASCADE,
            FOREIGN KEY (inventory_item_id) REFERENCES inventory_items(id)
        );

        CREATE TABLE IF NOT EXISTS waivers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER,
            customer_name TEXT NOT NULL,
            activities TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL
                CHECK (status IN ('signed', 'pending', 'expired')),
            signed_date TEXT,
            expiry_date TEXT,
            rental_id INTEGER,
            notes TEXT NOT NULL DEFAULT '',
            created_at TEXT,
            FOREIGN KEY (customer_id) REFERENCES customers(id),
            FOREIGN KEY (rental_id) REFERENCES rentals(id)
        );

        CREATE TABLE IF NOT EXISTS maintenance_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            equipment_id INTEGER NOT NULL,
            maintenance_type TEXT NOT NULL,
            maintenance_date TEXT NOT NULL,
            performed_by TEXT NOT NULL,
            description TEXT NOT NULL,
            cost REAL NOT NULL DEFAULT 0 CHECK (cost >= 0),
            condition_before TEXT NOT NULL,
            condition_after TEXT NOT NULL,
            downtime_hours INTEGER NOT NULL DEFAULT 0,
            warranty_work INTEGER NOT NULL DEFAULT 0,
            maintenance_notes TEXT NOT NULL DEFAULT '',
            photos_taken INTEGER NOT NULL DEFAULT 0,
            idempotency_key TEXT UNIQUE,
            created_at TEXT,
            FOREIGN KEY (equipment_id) REFERENCES inventory_items(id)
        );

        CREATE TABLE IF NOT EXISTS customer_transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            customer_id INTEGER NOT NULL,
            transaction_type TEXT NOT NULL,
            transaction_date TEXT NOT NULL,
            amount REAL NOT NULL CHECK (amount > 0),
            payment_method TEXT NOT NULL,
            reference_id INTEGER,
            reference_type TEXT,
            description TEXT NOT NULL,
            items_json TEXT NOT NULL DEFAULT '[]',
            staff_member TEXT,
            notes TEXT NOT NULL DEFAULT '',
            idempotency_key TEXT UNIQUE,
            created_at TEXT,
            FOREIGN KEY (customer_id) REFERENCES customers(id)
        );

        CREATE INDEX IF NOT EXISTS idx_rentals_status
            ON rentals(status);
        CREATE INDEX IF NOT EXISTS idx_rentals_end_date
            ON rentals(end_date);
        CREATE INDEX IF NOT EXISTS idx_rentals_customer_id
            ON rentals(customer_id);
        CREATE INDEX IF NOT EXISTS idx_rental_items_rental_id
            ON rental_items(rental_id);
        CREATE INDEX IF NOT EXISTS idx_rental_items_inventory_item_id
            ON rental_items(inventory_item_id);
        CREATE INDEX IF NOT EXISTS idx_inventory_items_status
            ON inventory_items(status);
        CREATE INDEX IF NOT EXISTS idx_waivers_customer_id
            ON waivers(customer_id);
        CREATE INDEX IF NOT EXISTS idx_maintenance_records_equipment_id
            ON maintenance_records(equipment_id);
        CREATE INDEX IF NOT EXISTS idx_customer_transactions_customer_id
            ON customer_transactions(customer_id);
        """,
    ),
    Migration(
        version=2,
        script="""
        CREATE TABLE IF NOT EXISTS return_intents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            rental_id INTEGER NOT NULL UNIQUE,
            mode TEXT NOT NULL CHECK (mode IN ('full', 'quick')),
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            completed_at TEXT,
            FOREIGN KEY (rental_id) REFERENCES rentals(id)
        );

        CREATE TABLE IF NOT EXISTS return_intent_steps (
            intent_id INTEGER NOT NULL,
            step TEXT NOT NULL,
            applied_at TEXT NOT NULL,
            PRIMARY KEY (intent_id, step),
            FOREIGN KEY (intent_id) REFERENCES return_intents(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_return_intents_completed_at
            ON return_intents(completed_at);
        """,
    ),
]


def _fetch_schema_version(connection: sqlite3.Connection) -> int:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS app_meta (
            schema_version INTEGER NOT NULL
        );
        """
    )
    row = connection.execute(
        "SELECT schema_version FROM app_meta LIMIT 1"
    ).fetchone()
    if row is None:
        connection.execute("INSERT INTO app_meta (schema_version) VALUES (0)")
        return 0
    return int(row[0])


def apply_migrations(connection: sqlite3.Connection) -> int:
    """Apply pending database migrations and return the resulting version."""
    with transaction(connection):
        current_version = _fetch_schema_version(connection)

    for migration in MIGRATIONS:
        if migration.version <= current_version:
            continue

        if migration.requires_foreign_keys_off:
            connection.execute("PRAGMA foreign_keys = OFF;")

        with transaction(connection):
            connection.executescript(migration.script)
            connection.execute(
                "UPDATE app_meta SET schema_version = ?",
                (migration.version,),
            )

        if migration.requires_foreign_keys_off:
            connection.execute("PRAGMA foreign_keys = ON;")

        current_version = migration.version
    return current_version
