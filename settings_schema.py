from pydantic import BaseModel, ValidationError, field_validator

class GatewaySettings(BaseModel):
    api_url: str = "https://app.fit-track.net/api/"
    proxy_path: str = "/api/proxy"
    logout_path: str = "/api/logout"
    login_path: str = "/login"
    jwt_secret: str = ""
    default_locale: str = "en"
    cookie_max_age: int = 86400
    request_timeout: float = 15.0
    proxy_timeout: float = 10.0
    user_type: str = "coach"
    storage_path: str = "session.yaml"

    @field_validator("proxy_path", "logout_path", "login_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("cookie_max_age")
    @classmethod
    def _positive_lifetime(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("cookie_max_age must be positive")
        return value

def validate_settings(data: dict) -> None:
    try:
        GatewaySettings(**data)
    except ValidationError as e:
        raise ValueError(str(e))
