import os
import yaml
import keyring
from keyring.errors import PasswordDeleteError

from settings_schema import GatewaySettings, validate_settings

APP_VERSION = "1.0.0"

ENV_OVERRIDES = {
    "api_url": ("FITTRACK_API_URL", "REACT_APP_API_URL"),
    "jwt_secret": ("FITTRACK_JWT_SECRET",),
    "default_locale": ("FITTRACK_DEFAULT_LOCALE",),
}


class YamlConfig:
    """Load and save settings to a YAML file with optional encryption."""

    SENSITIVE_KEYS = {
        "jwt_secret",
        "authToken",
        "token",
        "access_token",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = "fittrack"

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if self.encrypt:
            for key in list(data.keys()):
                if key in self.SENSITIVE_KEYS:
                    secret = keyring.get_password(self.service, key)
                    if secret is not None:
                        data[key] = secret
                    else:
                        data.pop(key, None)
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key in out:
                    keyring.set_password(self.service, key, str(out[key]))
                    out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)

    def forget(self, key: str) -> None:
        """Drop a sensitive value from the keyring, if one was stored."""
        if not self.encrypt or key not in self.SENSITIVE_KEYS:
            return
        try:
            keyring.delete_password(self.service, key)
        except PasswordDeleteError:
            pass


def load_settings(path: str = "settings.yaml") -> GatewaySettings:
    """Read ``path`` and layer environment variables on top of it."""
    data = YamlConfig(path).load()
    for field, names in ENV_OVERRIDES.items():
        for name in names:
            value = os.environ.get(name, "").strip()
            if value:
                data[field] = value
                break
    validate_settings(data)
    return GatewaySettings(**data)
