"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup.

Recognised variables:

- ``LOG_LEVEL``: logging level name (default INFO)
- ``FLASK_ENV``: ``production`` quiets third-party loggers
- ``PORT``: API server port (default 8000)
- ``DIGITNET_HIDDEN_SIZE``: default hidden layer size (default 30)
- ``DIGITNET_EPOCHS``: default number of training epochs (default 5)
- ``DIGITNET_LEARNING_RATE``: default learning rate (default 0.01)
- ``DIGITNET_SEED``: seed for new networks (default unset, i.e. random)
"""

import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    log_level: str = 'INFO'
    is_production: bool = False
    port: int = 8000
    hidden_size: int = 30
    epochs: int = 5
    learning_rate: float = 0.01
    seed: Optional[int] = None


def _env_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Raises:
        ValueError: If a numeric variable cannot be parsed or is out of range
    """
    env = os.environ if environ is None else environ

    settings = Settings(
        log_level=env.get('LOG_LEVEL', 'INFO').upper(),
        is_production=env.get('FLASK_ENV') == 'production',
        port=_env_int(env, 'PORT', 8000),
        hidden_size=_env_int(env, 'DIGITNET_HIDDEN_SIZE', 30),
        epochs=_env_int(env, 'DIGITNET_EPOCHS', 5),
        learning_rate=_env_float(env, 'DIGITNET_LEARNING_RATE', 0.01),
        seed=_env_int(env, 'DIGITNET_SEED', None)
    )

    if settings.hidden_size < 1:
        raise ValueError("DIGITNET_HIDDEN_SIZE must be positive")
    if settings.epochs < 0:
        raise ValueError("DIGITNET_EPOCHS must be non-negative")
    if settings.learning_rate <= 0:
        raise ValueError("DIGITNET_LEARNING_RATE must be positive")

    return settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    if settings is None:
        settings = load_settings()
    log_level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if settings.is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitnet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
