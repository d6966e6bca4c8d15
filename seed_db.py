import os
import sys

# Ensure package import when run from a checkout
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dental_clinic.core.logging import setup_logging
from dental_clinic.database import SessionLocal, create_tables
from dental_clinic.seed import create_initial_data


def main():
    logger = setup_logging()
    create_tables()

    db = SessionLocal()
    try:
        created = create_initial_data(db)
    finally:
        db.close()
    logger.info("seed_finished", **created)


if __name__ == "__main__":
    main()
