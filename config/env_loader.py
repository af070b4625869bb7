import os

from dotenv import load_dotenv


def load_env_variables(env_path=".env"):
    load_dotenv(dotenv_path=env_path)
    return {
        "DATA_DIR": os.getenv("ISOTK_DATA_DIR", ""),
        "OUT_DIR": os.getenv("ISOTK_OUT_DIR", ""),
    }


# Sample .env file (to place in project root)
# ISOTK_DATA_DIR=/srv/data/isotope_exposure
# ISOTK_OUT_DIR=/srv/results/isotk
