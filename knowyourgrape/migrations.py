"""
Alembic runner used by the migration endpoints
"""
import logging
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).parent / "alembic.ini"


def run_alembic_command(command_args: list) -> dict:
    """Run an Alembic command and return the result"""
    command = [sys.executable, "-m", "alembic", "-c", str(ALEMBIC_INI)] + list(command_args)
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=300,  # 5 minute timeout
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error("Alembic command failed to run: %s", e)
        return {
            "success": False,
            "returncode": -1,
            "stdout": "",
            "stderr": str(e),
            "command": " ".join(command),
        }

    if result.returncode != 0:
        logger.error("Alembic %s exited with %s", " ".join(command_args), result.returncode)
    return {
        "success": result.returncode == 0,
        "returncode": result.returncode,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "command": " ".join(command),
    }
