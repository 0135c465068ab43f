"""
test_config.py
~~~~~~~~~~~~~~

Unit tests for environment settings and logging setup.
"""

import pytest
import os
import sys
import logging

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.config import Settings, load_settings, configure_logging


@pytest.mark.unit
class TestSettings:
    """Test reading settings from an environment mapping."""

    def test_defaults(self):
        settings = load_settings({})

        assert settings == Settings()
        assert settings.seed is None
        assert settings.is_production is False

    def test_values_from_environment(self):
        settings = load_settings({
            'LOG_LEVEL': 'debug',
            'FLASK_ENV': 'production',
            'PORT': '9000',
            'DIGITNET_HIDDEN_SIZE': '64',
            'DIGITNET_EPOCHS': '12',
            'DIGITNET_LEARNING_RATE': '0.05',
            'DIGITNET_SEED': '17'
        })

        assert settings.log_level == 'DEBUG'
        assert settings.is_production is True
        assert settings.port == 9000
        assert settings.hidden_size == 64
        assert settings.epochs == 12
        assert settings.learning_rate == 0.05
        assert settings.seed == 17

    def test_blank_values_use_defaults(self):
        assert load_settings({'DIGITNET_SEED': ' '}).seed is None

    @pytest.mark.parametrize('name,value', [
        ('PORT', 'eighty'),
        ('DIGITNET_HIDDEN_SIZE', '1.5'),
        ('DIGITNET_LEARNING_RATE', 'fast'),
    ])
    def test_malformed_values_name_variable(self, name, value):
        with pytest.raises(ValueError, match=name):
            load_settings({name: value})

    @pytest.mark.parametrize('name,value', [
        ('DIGITNET_HIDDEN_SIZE', '0'),
        ('DIGITNET_EPOCHS', '-1'),
        ('DIGITNET_LEARNING_RATE', '0'),
    ])
    def test_out_of_range_values(self, name, value):
        with pytest.raises(ValueError, match=name):
            load_settings({name: value})


@pytest.mark.unit
class TestConfigureLogging:
    """Test logger levels chosen for each environment."""

    def test_production_quiets_third_party_loggers(self):
        configure_logging(Settings(is_production=True))

        assert logging.getLogger('werkzeug').level == logging.WARNING
        assert logging.getLogger('socketio').level == logging.WARNING
        assert logging.getLogger('digitnet').level == logging.INFO

    def test_development_keeps_socketio_logs(self):
        configure_logging(Settings(is_production=False))

        assert logging.getLogger('socketio').level == logging.INFO
