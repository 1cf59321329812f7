from typing import List
from urllib.parse import quote

from pydantic import BaseModel, Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import WEBSHARE_PROXY_LIST_URL


class DownloadSettings(BaseModel):
    max_concurrent_downloads: int = 4
    max_parallel_jobs: int = 10
    min_delay_between_downloads_ms: int = 100
    download_timeout_seconds: float = 300
    enable_retry: bool = True
    max_retry_attempts: int = 3
    retry_delay_milliseconds: int = 2000
    retry_exponential_backoff: bool = False
    enable_detailed_progress: bool = True
    shutdown_grace_seconds: float = 30
    job_ttl_seconds: int = 0
    cleanup_interval: int = 3600

    @property
    def attempts(self) -> int:
        return self.max_retry_attempts if self.enable_retry else 1


class YouTubeSettings(BaseModel):
    max_retries: int = 3
    retry_delay_milliseconds: int = 1000
    use_exponential_backoff: bool = True
    socket_timeout_seconds: int = 30
    working_dir: str = "audio_workspace"


class AudioSettings(BaseModel):
    bitrate: int = 192
    sample_rate: int = 44100
    embed_album_art: bool = True
    normalize_audio: bool = False


class SpotifySettings(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    token_refresh_buffer_seconds: int = 60
    market: str = "US"

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class ProgressSettings(BaseModel):
    enabled: bool = True
    update_interval_ms: int = 3000
    webhook_url: str = ""
    webhook_secret: str = ""


class ProxySettings(BaseModel):
    enabled: bool = False
    provider: str = "Webshare"
    host: str = ""
    port: int = 80
    username: str = ""
    password: str = ""
    use_https: bool = False
    requires_authentication: bool = True
    webshare_api_key: str = ""
    webshare_api_url: str = WEBSHARE_PROXY_LIST_URL

    @property
    def proxy_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        credentials = ""
        if self.requires_authentication and self.username:
            credentials = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}@"
        return f"{scheme}://{credentials}{self.host}:{self.port}"

    def configuration_errors(self) -> List[str]:
        if not self.enabled or self.webshare_api_key:
            return []
        errors = []
        if not self.host.strip():
            errors.append("PROXY_HOST is required when the proxy is enabled")
        if self.requires_authentication and not (self.username.strip() and self.password.strip()):
            errors.append("PROXY_USERNAME and PROXY_PASSWORD are required when proxy authentication is enabled")
        return errors


class ServerSettings(BaseModel):
    host: str
    port: int
    debug: bool


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        validate_default=True,
        extra="ignore",
    )

    max_concurrent_downloads: int = Field(default=4, ge=1, le=64)
    max_parallel_jobs: int = Field(default=10, ge=1, le=256)
    min_delay_between_downloads_ms: int = Field(default=100, ge=0)
    download_timeout_seconds: float = Field(default=300, gt=0)
    enable_retry: bool = True
    max_retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_milliseconds: int = Field(default=2000, ge=0)
    retry_exponential_backoff: bool = False
    enable_detailed_progress: bool = True
    shutdown_grace_seconds: float = Field(default=30, ge=0)
    job_ttl_seconds: int = Field(default=0, ge=0)
    cleanup_interval: int = Field(default=3600, ge=1)

    youtube_max_retries: int = Field(default=3, ge=1, le=10)
    youtube_retry_delay_milliseconds: int = Field(default=1000, ge=100, le=10000)
    youtube_use_exponential_backoff: bool = True
    youtube_socket_timeout_seconds: int = Field(default=30, ge=5, le=300)
    working_dir: str = "audio_workspace"

    audio_bitrate: int = Field(default=192, ge=64, le=320)
    audio_sample_rate: int = Field(default=44100, ge=8000, le=192000)
    embed_album_art: bool = True
    normalize_audio: bool = False

    spotify_client_id: str = ""
    spotify_client_secret: str = ""
    spotify_token_refresh_buffer_seconds: int = Field(default=60, ge=0, le=3600)
    spotify_market: str = "US"

    enable_progress_updates: bool = True
    progress_update_interval_ms: int = Field(default=3000, ge=0)
    webhook_url: str = ""
    webhook_secret: str = ""

    proxy_enabled: bool = False
    proxy_provider: str = "Webshare"
    proxy_host: str = ""
    proxy_port: int = Field(default=80, ge=1, le=65535)
    proxy_username: str = ""
    proxy_password: str = ""
    proxy_use_https: bool = False
    proxy_requires_authentication: bool = True
    webshare_api_key: str = ""
    webshare_api_url: str = WEBSHARE_PROXY_LIST_URL

    port: int = 5500
    debug: bool = False
    host: str = "0.0.0.0"
    api_secret_key: str = ""

    @computed_field
    @property
    def downloads(self) -> DownloadSettings:
        return DownloadSettings(
            max_concurrent_downloads=self.max_concurrent_downloads,
            max_parallel_jobs=self.max_parallel_jobs,
            min_delay_between_downloads_ms=self.min_delay_between_downloads_ms,
            download_timeout_seconds=self.download_timeout_seconds,
            enable_retry=self.enable_retry,
            max_retry_attempts=self.max_retry_attempts,
            retry_delay_milliseconds=self.retry_delay_milliseconds,
            retry_exponential_backoff=self.retry_exponential_backoff,
            enable_detailed_progress=self.enable_detailed_progress,
            shutdown_grace_seconds=self.shutdown_grace_seconds,
            job_ttl_seconds=self.job_ttl_seconds,
            cleanup_interval=self.cleanup_interval,
        )

    @computed_field
    @property
    def youtube(self) -> YouTubeSettings:
        return YouTubeSettings(
            max_retries=self.youtube_max_retries,
            retry_delay_milliseconds=self.youtube_retry_delay_milliseconds,
            use_exponential_backoff=self.youtube_use_exponential_backoff,
            socket_timeout_seconds=self.youtube_socket_timeout_seconds,
            working_dir=self.working_dir,
        )

    @computed_field
    @property
    def audio(self) -> AudioSettings:
        return AudioSettings(
            bitrate=self.audio_bitrate,
            sample_rate=self.audio_sample_rate,
            embed_album_art=self.embed_album_art,
            normalize_audio=self.normalize_audio,
        )

    @computed_field
    @property
    def spotify(self) -> SpotifySettings:
        return SpotifySettings(
            client_id=self.spotify_client_id,
            client_secret=self.spotify_client_secret,
            token_refresh_buffer_seconds=self.spotify_token_refresh_buffer_seconds,
            market=self.spotify_market,
        )

    @computed_field
    @property
    def progress(self) -> ProgressSettings:
        return ProgressSettings(
            enabled=self.enable_progress_updates,
            update_interval_ms=self.progress_update_interval_ms,
            webhook_url=self.webhook_url,
            webhook_secret=self.webhook_secret,
        )

    @computed_field
    @property
    def proxy(self) -> ProxySettings:
        return ProxySettings(
            enabled=self.proxy_enabled,
            provider=self.proxy_provider,
            host=self.proxy_host,
            port=self.proxy_port,
            username=self.proxy_username,
            password=self.proxy_password,
            use_https=self.proxy_use_https,
            requires_authentication=self.proxy_requires_authentication,
            webshare_api_key=self.webshare_api_key,
            webshare_api_url=self.webshare_api_url,
        )

    @computed_field
    @property
    def server(self) -> ServerSettings:
        return ServerSettings(host=self.host, port=self.port, debug=self.debug)

    @computed_field
    @property
    def spotify_enabled(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    def validate_for_production(self) -> None:
        """Validate settings that only matter once the service takes real traffic"""
        errors = []
        if not self.spotify_enabled:
            errors.append("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set")
        if self.webhook_url and self.webhook_secret and len(self.webhook_secret) < 32:
            errors.append("WEBHOOK_SECRET must be at least 32 characters for security")
        errors.extend(self.proxy.configuration_errors())
        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")
