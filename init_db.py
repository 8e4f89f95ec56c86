from database import engine, Base
import models
from seed_db import seed_data

def init_db(seed: bool = False):
    Base.metadata.create_all(bind=engine)
    print("Database initialized.")
    if seed:
        seed_data()

if __name__ == "__main__":
    import sys
    init_db(seed="--seed" in sys.argv)
