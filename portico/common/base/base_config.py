# portico/common/base/base_config.py
# =============================================================================
# BaseConfig - Foundation for all Portico configuration classes
#
# - SettingsConfigDict (Pydantic v2)
# - Automatic .env file loading
# - Case-insensitive environment variables
# - Nested config support via __ delimiter
# - @lru_cache singleton pattern for factory functions
#
# Usage:
#     from portico.common.base.base_config import BaseConfig
#     from pydantic_settings import SettingsConfigDict
#     from functools import lru_cache
#
#     class MyConfig(BaseConfig):
#         model_config = SettingsConfigDict(
#             **BaseConfig.model_config,
#             env_prefix="MY_"
#         )
#         timeout_ms: int = 5000
#
#     @lru_cache(maxsize=1)
#     def get_my_config() -> MyConfig:
#         return MyConfig()
# =============================================================================

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all Portico configs.

    All configuration classes inherit from this base to get:
    1. Consistent .env file loading
    2. Case-insensitive environment variable matching
    3. Nested configs via __ delimiter
    4. A repr that masks secrets for logs

    Secrets Handling:
    - Sensitive fields (passwords, DSNs with credentials) use SecretStr
    - Access raw value via .get_secret_value() when needed
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    def __repr__(self) -> str:
        """Safe repr that masks secrets."""
        class_name = self.__class__.__name__
        fields = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            if isinstance(value, SecretStr):
                fields.append(f"{field_name}=SecretStr('**********')")
            else:
                fields.append(f"{field_name}={value!r}")
        return f"{class_name}({', '.join(fields)})"
