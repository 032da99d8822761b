import os
import sys
import tempfile
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ENV_FILE = BASE_DIR / '.env'

load_dotenv(ENV_FILE)


def _default_python():
    # The "py" launcher is the reliable interpreter name on Windows hosts
    return 'py' if sys.platform == 'win32' else 'python3'


class Settings:
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '3001'))
    CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()]

    UPLOAD_DIR = os.getenv('UPLOAD_DIR', str(BASE_DIR / 'uploads'))
    WORK_DIR = os.getenv('WORK_DIR', tempfile.gettempdir())

    # Toolchains resolved on the host PATH
    PYTHON_COMMAND = os.getenv('PYTHON_COMMAND', _default_python())
    NODE_COMMAND = os.getenv('NODE_COMMAND', 'node')
    GCC_COMMAND = os.getenv('GCC_COMMAND', 'gcc')
    GXX_COMMAND = os.getenv('GXX_COMMAND', 'g++')
    JAVAC_COMMAND = os.getenv('JAVAC_COMMAND', 'javac')
    JAVA_COMMAND = os.getenv('JAVA_COMMAND', 'java')

    DEFAULT_LANGUAGE = os.getenv('DEFAULT_LANGUAGE', 'python')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)
