"""
Configuration for Know Your Grape API
Uses SSM Parameter Store for environment-aware configuration
"""
import os
import logging
from dataclasses import dataclass
from typing import Tuple, Dict, Any

import boto3

logger = logging.getLogger(__name__)

LOCAL_SQLITE_URL = "sqlite:///./knowyourgrape_local.db"


def get_environment() -> Tuple[str, Dict[str, Any]]:
    """Determine environment based on AWS Lambda context"""
    amplify_env = os.environ.get('AMPLIFY_ENV', '')
    aws_branch = os.environ.get('AWS_BRANCH', '')
    function_name = os.environ.get('AWS_LAMBDA_FUNCTION_NAME', '')

    env_info = {
        'amplify_env': amplify_env,
        'aws_branch': aws_branch,
        'function_name': function_name
    }

    if ('sandbox' in amplify_env.lower() or
            aws_branch in ['dev', 'test', 'sandbox'] or
            'sandbox' in function_name.lower() or
            'test' in function_name.lower()):
        return 'test', env_info
    return 'prod', env_info


def get_ssm_parameter(parameter_name: str) -> str:
    """Get SSM parameter, trying the environment path, the generic path, then env vars"""
    env, env_info = get_environment()
    env_var = parameter_name.upper().replace('-', '_').replace('/', '_')

    # Explicit environment variables win so local runs never touch AWS
    env_value = os.environ.get(env_var)
    if env_value:
        return env_value

    ssm_client = boto3.client('ssm')
    paths_to_try = [
        f"/amplify/knowyourgrape/{env}/{parameter_name}",
        f"/amplify/knowyourgrape/{parameter_name}",
    ]
    errors = []
    for path in paths_to_try:
        try:
            response = ssm_client.get_parameter(Name=path, WithDecryption=True)
            return response['Parameter']['Value']
        except Exception as e:
            errors.append(f"{path} ({str(e)})")

    raise RuntimeError(
        f"Parameter {parameter_name} not found. Tried: {', '.join(errors)}, "
        f"env var {env_var} (not set). Environment: {env}, Info: {env_info}"
    )


def get_database_url(driver: str = "pg8000") -> str:
    """
    Get database URL from environment or SSM parameters

    The API connects through pg8000; Alembic migrations pass ``driver="psycopg2"``.
    """
    if os.environ.get('LOCAL_DB') == 'true':
        logger.info("Using local SQLite database")
        return LOCAL_SQLITE_URL

    local_db_url = os.environ.get('DATABASE_URL')
    if local_db_url:
        logger.info("Using custom DATABASE_URL")
        return local_db_url

    try:
        db_host = get_ssm_parameter("database/host")
        db_port = get_ssm_parameter("database/port") or "5432"
        db_name = get_ssm_parameter("database/name")
        db_user = get_ssm_parameter("database/username")
        db_password = get_ssm_parameter("database/password")

        logger.info("Using PostgreSQL database: %s:%s/%s", db_host, db_port, db_name)
        return f"postgresql+{driver}://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
    except Exception as e:
        logger.warning("Error getting database configuration from SSM: %s", e)
        logger.warning("Falling back to local SQLite database")
        return LOCAL_SQLITE_URL


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


@dataclass(frozen=True)
class Settings:
    """Runtime knobs for the API and the participant client"""
    api_base_url: str = "http://127.0.0.1:8000"
    sequence_cache_enabled: bool = True
    sync_interval_seconds: float = 15.0
    sync_max_attempts: int = 4
    sync_base_delay_seconds: float = 0.5
    sync_max_delay_seconds: float = 8.0
    sync_pass_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 10.0


def get_settings() -> Settings:
    """Read settings from environment variables"""
    return Settings(
        api_base_url=os.environ.get('KYG_API_BASE_URL', Settings.api_base_url),
        sequence_cache_enabled=os.environ.get('KYG_SEQUENCE_CACHE', 'true').lower() != 'false',
        sync_interval_seconds=_env_float('KYG_SYNC_INTERVAL', Settings.sync_interval_seconds),
        sync_max_attempts=_env_int('KYG_SYNC_MAX_ATTEMPTS', Settings.sync_max_attempts),
        sync_base_delay_seconds=_env_float('KYG_SYNC_BASE_DELAY', Settings.sync_base_delay_seconds),
        sync_max_delay_seconds=_env_float('KYG_SYNC_MAX_DELAY', Settings.sync_max_delay_seconds),
        sync_pass_timeout_seconds=_env_float('KYG_SYNC_PASS_TIMEOUT', Settings.sync_pass_timeout_seconds),
        request_timeout_seconds=_env_float('KYG_REQUEST_TIMEOUT', Settings.request_timeout_seconds),
    )
