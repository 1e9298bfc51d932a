from databases import Database


CREATE_DINNER_DAYS_TABLE = """
CREATE TABLE IF NOT EXISTS dinner_days (
    date VARCHAR(10) PRIMARY KEY,
    used_budget REAL
)
"""


CREATE_COOKS_TABLE = """
CREATE TABLE IF NOT EXISTS cooks (
    date VARCHAR(10) NOT NULL,
    member_id VARCHAR(64) NOT NULL,
    seq INTEGER NOT NULL,
    PRIMARY KEY (date, member_id)
)
"""


CREATE_INGREDIENTS_TABLE = """
CREATE TABLE IF NOT EXISTS day_ingredients (
    date VARCHAR(10) NOT NULL,
    ingredient VARCHAR(64) NOT NULL,
    seq INTEGER NOT NULL,
    PRIMARY KEY (date, ingredient)
)
"""


CREATE_ATTENDANTS_TABLE = """
CREATE TABLE IF NOT EXISTS attendants (
    date VARCHAR(10) NOT NULL,
    id VARCHAR(64) NOT NULL,
    portions REAL NOT NULL,
    is_take_away INTEGER NOT NULL DEFAULT 0,
    is_automatically_set INTEGER NOT NULL DEFAULT 0,
    seq INTEGER NOT NULL,
    PRIMARY KEY (date, id)
)
"""


CREATE_PREFERENCES_TABLE = """
CREATE TABLE IF NOT EXISTS member_preferences (
    member_id VARCHAR(64) PRIMARY KEY,
    join_dinners INTEGER NOT NULL DEFAULT 0,
    default_portions REAL NOT NULL DEFAULT 1,
    weekdays VARCHAR(1024) NOT NULL DEFAULT '{}'
)
"""


CREATE_BUDGET_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS budget_entries (
    id VARCHAR(64) PRIMARY KEY,
    member_id VARCHAR(64) NOT NULL,
    dinner_date VARCHAR(10),
    amount REAL NOT NULL,
    type VARCHAR(16) NOT NULL,
    description VARCHAR(256) NOT NULL,
    created_at VARCHAR(32) NOT NULL,
    UNIQUE (member_id, dinner_date)
)
"""


CREATE_GUEST_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS guest_entries (
    id VARCHAR(64) PRIMARY KEY,
    dinner_date VARCHAR(10) UNIQUE,
    amount REAL NOT NULL,
    type VARCHAR(16) NOT NULL,
    description VARCHAR(256) NOT NULL,
    created_at VARCHAR(32) NOT NULL
)
"""


CREATE_ADMIN_SETTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS admin_settings (
    id INTEGER PRIMARY KEY,
    budget_per_meal REAL NOT NULL DEFAULT 0,
    currency_type VARCHAR(16) NOT NULL DEFAULT ':-',
    suspended_weekdays VARCHAR(64) NOT NULL DEFAULT '[]'
)
"""


TABLES = (
    CREATE_DINNER_DAYS_TABLE,
    CREATE_COOKS_TABLE,
    CREATE_INGREDIENTS_TABLE,
    CREATE_ATTENDANTS_TABLE,
    CREATE_PREFERENCES_TABLE,
    CREATE_BUDGET_ENTRIES_TABLE,
    CREATE_GUEST_ENTRIES_TABLE,
    CREATE_ADMIN_SETTINGS_TABLE,
)


async def create_db(db: Database) -> None:
    for query in TABLES:
        await db.execute(  # pyright: ignore[reportUnknownMemberType]
            query=query
        )
