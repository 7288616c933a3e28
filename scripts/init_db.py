from rockid.db import create_db_and_tables, engine

if __name__ == "__main__":
    print(f"Creating tables on {engine.url.render_as_string(hide_password=True)}...")
    try:
        create_db_and_tables()
        print("Tables created successfully!")
    except Exception as e:
        print(f"Error creating tables: {e}")
        raise SystemExit(1)
