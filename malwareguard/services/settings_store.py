import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from malwareguard.models import AppSetting
from malwareguard.schemas import AI_PROVIDERS

logger = logging.getLogger(__name__)

# Known keys and their defaults
SETTING_DEFAULTS: Dict[str, Optional[str]] = {
    'ai_provider': 'openai',
    'openai_api_key': None,
    'perplexity_api_key': None,
    'app_lock_enabled': 'false',
}

SECRET_KEYS = ('openai_api_key', 'perplexity_api_key')


class UnknownSettingError(KeyError):
    pass


class InvalidSettingError(ValueError):
    pass


class SettingsStore:
    """
    Persistent user preferences: AI provider choice, provider API keys and
    the app-lock flag. Backed by the app_settings table.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> Optional[AppSetting]:
        self._check_key(key)
        return self.db.query(AppSetting).filter(AppSetting.key == key).first()

    def value(self, key: str) -> Optional[str]:
        row = self.get(key)
        return row.value if row else SETTING_DEFAULTS[key]

    def set(self, key: str, value: str) -> AppSetting:
        """
        Create or update a setting

        Raises:
            UnknownSettingError: key is not a known setting
            InvalidSettingError: value is not acceptable for the key
        """
        self._check_key(key)
        value = self._validate(key, value)

        row = self.get(key)
        if row is None:
            row = AppSetting(key=key, value=value)
            self.db.add(row)
        else:
            row.value = value
            row.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(row)
        logger.info(f"⚙️ Setting updated: {key}")
        return row

    def delete(self, key: str) -> bool:
        row = self.get(key)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        logger.info(f"🗑️ Setting reset to default: {key}")
        return True

    def all(self) -> Dict[str, Optional[str]]:
        """Every known setting, stored value or default; API keys masked"""
        stored = {row.key: row.value for row in self.db.query(AppSetting).all()}
        result = {}
        for key, default in SETTING_DEFAULTS.items():
            value = stored.get(key, default)
            result[key] = mask_secret(value) if key in SECRET_KEYS else value
        return result

    @staticmethod
    def _check_key(key: str):
        if key not in SETTING_DEFAULTS:
            raise UnknownSettingError(key)

    @staticmethod
    def _validate(key: str, value: str) -> str:
        value = (value or '').strip()
        if key == 'ai_provider':
            value = value.lower()
            if value not in AI_PROVIDERS:
                raise InvalidSettingError(f"ai_provider must be one of {', '.join(AI_PROVIDERS)}")
        elif key == 'app_lock_enabled':
            value = value.lower()
            if value not in ('true', 'false'):
                raise InvalidSettingError("app_lock_enabled must be 'true' or 'false'")
        elif not value:
            raise InvalidSettingError(f"{key} must not be empty")
        return value


def mask_secret(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    if len(value) <= 8:
        return '*' * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
